"""Cookie-based session tokens.

Tokens are stateless HS256 JWTs stored in the ``token`` cookie. Logging out
only deletes the cookie in the browser: a copied token keeps working until
its one hour expiry because nothing is recorded server-side.
"""

from datetime import timedelta
from typing import Dict

from flask import jsonify
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    set_access_cookies,
    unset_jwt_cookies,
)

from .documents import normalize_email

SESSION_COOKIE_NAME = "token"
SESSION_LIFETIME = timedelta(hours=1)
ACCESS_DENIED_MESSAGE = "access denied"
ANONYMOUS_SUBJECT = "anonymous"
RESERVED_CLAIMS = {"aud", "csrf", "exp", "fresh", "iat", "iss", "jti", "nbf", "sub", "type"}


def configure_sessions(app, secret_key: str, production: bool) -> JWTManager:
    app.config["JWT_SECRET_KEY"] = secret_key
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = SESSION_LIFETIME
    app.config["JWT_TOKEN_LOCATION"] = ["cookies"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = SESSION_COOKIE_NAME
    app.config["JWT_COOKIE_SECURE"] = production
    app.config["JWT_COOKIE_SAMESITE"] = "None" if production else "Strict"
    app.config.setdefault("JWT_COOKIE_CSRF_PROTECT", False)

    jwt = JWTManager(app)

    def deny_access(*_args):
        return jsonify({"message": ACCESS_DENIED_MESSAGE}), 401

    jwt.unauthorized_loader(deny_access)
    jwt.invalid_token_loader(deny_access)
    jwt.expired_token_loader(deny_access)
    jwt.revoked_token_loader(deny_access)
    jwt.user_lookup_error_loader(deny_access)
    return jwt


def sanitize_identity_payload(payload: Dict) -> Dict:
    return {
        str(key): value
        for key, value in payload.items()
        if str(key) not in RESERVED_CLAIMS
    }


def issue_session(response, payload: Dict) -> str:
    """Sign ``payload`` and attach it to ``response`` as the session cookie."""
    claims = sanitize_identity_payload(payload)
    subject = normalize_email(claims.get("email")) or ANONYMOUS_SUBJECT
    token = create_access_token(identity=subject, additional_claims=claims)
    set_access_cookies(response, token)
    return token


def revoke_session(response) -> None:
    unset_jwt_cookies(response)


def current_identity() -> Dict:
    """Identity payload of the verified request, without JWT bookkeeping."""
    return sanitize_identity_payload(get_jwt())
