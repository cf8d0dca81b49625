import os
from typing import Dict, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import get_jwt_identity, jwt_required
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from .documents import (
    serialize_document,
    serialize_insert_result,
    serialize_update_result,
    serialize_value,
)
from .listings import MAX_INT64, ListingQueryService
from .payments import DEFAULT_PAYMENT_API_BASE, PaymentIntentClient, PaymentIntentError
from .registry import UserRegistry
from .sessions import (
    ANONYMOUS_SUBJECT,
    configure_sessions,
    current_identity,
    issue_session,
    revoke_session,
)
from .votes import VoteConflictError, VoteLedger

load_dotenv()

DEFAULT_SECRET_KEY = "change-me-in-production"
DEFAULT_DB_HOST = "cluster0.yshawkz.mongodb.net"
DEFAULT_DB_NAME = "webtecDb"

# (url prefix, collection, count path, count key)
LISTING_CATEGORIES = [
    ("allproducts", "products", "allproductcount", "productCount"),
    ("featured", "featured", "featuredcount", "featuredCount"),
    ("trending", "trending", "trendingcount", "trendingCount"),
]


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def build_mongo_uri() -> str:
    explicit_uri = (os.getenv("MONGO_URI") or "").strip()
    if explicit_uri:
        return explicit_uri

    db_name = os.getenv("DB_NAME", DEFAULT_DB_NAME) or DEFAULT_DB_NAME
    db_user = (os.getenv("DB_USER") or "").strip()
    db_pass = (os.getenv("DB_PASS") or "").strip()
    if db_user and db_pass:
        db_host = os.getenv("DB_HOST", DEFAULT_DB_HOST) or DEFAULT_DB_HOST
        return (
            f"mongodb+srv://{quote_plus(db_user)}:{quote_plus(db_pass)}@{db_host}/"
            f"{db_name}?retryWrites=true&w=majority"
        )
    return f"mongodb://localhost:27017/{db_name}"


def parse_non_negative_int(value, default: int = 0) -> int:
    if value is None or str(value).strip() == "":
        return default
    numeric = int(str(value).strip())
    if numeric < 0 or numeric > MAX_INT64:
        raise ValueError("Expected a non-negative 64-bit integer.")
    return numeric


def create_app(config_overrides: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` replaces the MongoDB database normally opened through
    Flask-PyMongo, which lets tests run against an in-memory store.
    """
    app = Flask(__name__)
    overrides = dict(config_overrides or {})

    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    deployment_mode = (
        os.getenv("NODE_ENV") or os.getenv("APP_ENV") or "development"
    ).strip().lower()
    app.config["PRODUCTION"] = deployment_mode == "production"
    app.config["SESSION_SECRET"] = (
        os.getenv("TOKEN") or os.getenv("JWT_SECRET_KEY") or ""
    ).strip()
    app.config["MONGO_URI"] = build_mongo_uri()
    app.config["PAYMENT_SECRET_KEY"] = (
        os.getenv("PAYMENT_SECRET_KEY") or os.getenv("STRIPE_SECRET_KEY") or ""
    ).strip()
    app.config["PAYMENT_API_BASE"] = (
        os.getenv("PAYMENT_API_BASE", DEFAULT_PAYMENT_API_BASE) or DEFAULT_PAYMENT_API_BASE
    )
    app.config["PAYMENT_CURRENCY"] = os.getenv("PAYMENT_CURRENCY", "usd") or "usd"
    app.config["VOTE_UPSERT"] = env_flag("VOTE_UPSERT", True)
    app.config.update(overrides)

    production = bool(app.config["PRODUCTION"])
    secret_key = app.config["SESSION_SECRET"]
    if not secret_key:
        if production:
            raise RuntimeError("TOKEN must be set to sign session tokens in production.")
        app.logger.warning("TOKEN is not set; using an insecure development secret.")
        secret_key = DEFAULT_SECRET_KEY
    if not app.config["PAYMENT_SECRET_KEY"]:
        app.logger.warning("PAYMENT_SECRET_KEY is not set; payment intents will fail.")
    app.logger.info("Starting in %s mode", "production" if production else "development")

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5000",
        "http://localhost:5173",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins)
    configure_sessions(app, secret_key, production)

    if database is None:
        database = PyMongo(app).db

    listings = {
        prefix: ListingQueryService(database[collection_name])
        for prefix, collection_name, _, _ in LISTING_CATEGORIES
    }
    ledgers = {
        prefix: VoteLedger(database[collection_name], allow_upsert=app.config["VOTE_UPSERT"])
        for prefix, collection_name, _, _ in LISTING_CATEGORIES
    }
    users = UserRegistry(database.users)
    reviews_collection = database.reviews
    reports_collection = database.reports
    payments = PaymentIntentClient(
        app.config["PAYMENT_SECRET_KEY"],
        api_base=app.config["PAYMENT_API_BASE"],
        currency=app.config["PAYMENT_CURRENCY"],
    )

    try:
        users.ensure_indexes()
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure unique index for users: %s", exc)

    # --- Error handlers ---

    @app.errorhandler(PyMongoError)
    def handle_database_error(exc):
        app.logger.exception("Database request failed: %s", exc)
        return (
            jsonify({"message": "Database request failed.", "error": "upstream_failure"}),
            500,
        )

    @app.errorhandler(PaymentIntentError)
    def handle_payment_error(exc):
        app.logger.error("Payment intent failed: %s", exc)
        return jsonify({"message": str(exc), "error": "payment_failure"}), 502

    @app.errorhandler(VoteConflictError)
    def handle_vote_conflict(exc):
        app.logger.warning("Vote toggle gave up: %s", exc)
        return jsonify({"message": str(exc), "error": "vote_conflict"}), 409

    # --- Helpers ---

    def read_json_object():
        payload = request.get_json(silent=True)
        if payload is None:
            return {}, None
        if not isinstance(payload, dict):
            return None, (jsonify({"message": "Expected a JSON object."}), 400)
        return payload, None

    def read_paging():
        try:
            page = parse_non_negative_int(request.args.get("page"))
            size = parse_non_negative_int(request.args.get("size"))
        except ValueError:
            return None, (
                jsonify({"message": "`page` and `size` must be non-negative integers."}),
                400,
            )
        return (page, size), None

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "Web Tec server is running"

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # Session
    @app.route("/jwt", methods=["POST"])
    def issue_token():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        response = jsonify({"auth": True})
        issue_session(response, payload)
        return response

    @app.route("/logout", methods=["POST"])
    def logout():
        response = jsonify({"clear": True})
        revoke_session(response)
        return response

    @app.route("/session", methods=["GET"])
    @jwt_required()
    def current_session():
        return jsonify({"identity": serialize_value(current_identity())})

    # Listings and votes
    def register_listing_routes(prefix: str, count_path: str, count_key: str):
        listing = listings[prefix]
        ledger = ledgers[prefix]

        def list_items():
            paging, paging_error = read_paging()
            if paging_error:
                return paging_error
            page, size = paging
            try:
                cursor = listing.list_items(page, size, request.args.get("search"))
            except ValueError as exc:
                return jsonify({"message": str(exc)}), 400
            return jsonify([serialize_document(document) for document in cursor])

        def insert_item():
            payload, payload_error = read_json_object()
            if payload_error:
                return payload_error
            result = listing.insert_item(payload)
            return jsonify(serialize_insert_result(result))

        def get_item(item_id: str):
            return jsonify(serialize_document(listing.get_item(item_id)))

        def count_items():
            return jsonify({count_key: listing.count_items()})

        def count_matching_items():
            return jsonify({count_key: listing.count_matching(request.args.get("search"))})

        def apply_vote(item_id: str):
            payload, payload_error = read_json_object()
            if payload_error:
                return payload_error
            vote_count = payload.get("updatedVoteCount")
            voted_by = payload.get("votedBy")
            if (
                not isinstance(vote_count, int)
                or isinstance(vote_count, bool)
                or abs(vote_count) > MAX_INT64
                or not isinstance(voted_by, list)
            ):
                return (
                    jsonify(
                        {
                            "message": "Provide an integer `updatedVoteCount` and a `votedBy` list."
                        }
                    ),
                    400,
                )
            try:
                result = ledger.apply_vote(item_id, vote_count, voted_by)
            except ValueError as exc:
                return jsonify({"message": str(exc)}), 400
            return jsonify(serialize_update_result(result))

        @jwt_required()
        def toggle_vote(item_id: str):
            # The subject is the normalized email, so case variants share one vote.
            voter = get_jwt_identity()
            if not voter or voter == ANONYMOUS_SUBJECT:
                return jsonify({"message": "Session carries no voter email."}), 400
            try:
                outcome = ledger.toggle_vote(item_id, voter)
            except ValueError as exc:
                return jsonify({"message": str(exc)}), 400
            return jsonify(outcome)

        app.add_url_rule(
            f"/{prefix}", f"list_{prefix}", list_items, methods=["GET"]
        )
        app.add_url_rule(
            f"/{prefix}", f"insert_{prefix}", insert_item, methods=["POST"]
        )
        app.add_url_rule(
            f"/{prefix}/<item_id>", f"get_{prefix}", get_item, methods=["GET"]
        )
        app.add_url_rule(
            f"/{count_path}", f"count_{prefix}", count_items, methods=["GET"]
        )
        app.add_url_rule(
            f"/{count_path}/filtered",
            f"count_filtered_{prefix}",
            count_matching_items,
            methods=["GET"],
        )
        app.add_url_rule(
            f"/upVotes/{prefix}/<item_id>",
            f"vote_{prefix}",
            apply_vote,
            methods=["PUT"],
        )
        app.add_url_rule(
            f"/upVotes/{prefix}/<item_id>/toggle",
            f"toggle_vote_{prefix}",
            toggle_vote,
            methods=["PUT"],
        )

    for prefix, _, count_path, count_key in LISTING_CATEGORIES:
        register_listing_routes(prefix, count_path, count_key)

    # Reviews and reports
    @app.route("/reviews", methods=["POST"])
    def create_review():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        document = dict(payload)
        document.pop("_id", None)
        result = reviews_collection.insert_one(document)
        return jsonify(serialize_insert_result(result))

    @app.route("/reviews", methods=["GET"])
    def list_reviews():
        query: Dict[str, object] = {}
        product_id = (request.args.get("productId") or "").strip()
        if product_id:
            query["productId"] = product_id
        return jsonify(
            [serialize_document(document) for document in reviews_collection.find(query)]
        )

    @app.route("/reports", methods=["POST"])
    def create_report():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        document = dict(payload)
        document.pop("_id", None)
        result = reports_collection.insert_one(document)
        return jsonify(serialize_insert_result(result))

    # Users
    @app.route("/users", methods=["POST"])
    def create_user():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        try:
            outcome = users.create_user(payload.get("email"), payload)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        if not outcome["created"]:
            return jsonify(
                {"message": "user already exists", "insertedId": None, "created": False}
            )
        return jsonify(
            {
                "acknowledged": True,
                "insertedId": serialize_value(outcome["id"]),
                "created": True,
            }
        )

    @app.route("/users", methods=["GET"])
    def list_users():
        return jsonify([serialize_document(document) for document in users.list_users()])

    @app.route("/users/<email>", methods=["GET"])
    def get_user(email: str):
        return jsonify(serialize_document(users.find_user(email)))

    @app.route("/users", methods=["PUT"])
    def update_user_status():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        try:
            result = users.update_subscription_status(
                payload.get("email"), payload.get("status")
            )
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        return jsonify(serialize_update_result(result))

    # Payments
    @app.route("/create-payment-intent", methods=["POST"])
    def create_payment_intent():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        try:
            client_secret = payments.create_payment_intent(payload.get("price"))
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        return jsonify({"clientSecret": client_secret})

    return app
