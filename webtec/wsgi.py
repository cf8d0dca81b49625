import os

from .app import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.logger.info("Web Tec server is running on port: %s", port)
    app.run(host="0.0.0.0", port=port)
