"""Firebase ID token verification for protected API endpoints."""

import logging

import firebase_admin
from fastapi import Request
from firebase_admin import auth as firebase_auth

from rxautomate.errors import UnauthorizedError

logger = logging.getLogger(__name__)


def _ensure_firebase_app() -> None:
    # Uses Application Default Credentials in Cloud Run
    if not firebase_admin._apps:
        firebase_admin.initialize_app()


async def verify_firebase_token(request: Request) -> dict:
    """FastAPI dependency that validates a Firebase ID token from the Authorization header.

    Returns the decoded token dict; its ``uid`` is recorded as the audit actor.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        logger.debug("Missing or malformed Authorization header on %s", request.url.path)
        raise UnauthorizedError()

    token = auth_header.removeprefix("Bearer ")
    _ensure_firebase_app()
    try:
        return firebase_auth.verify_id_token(token)
    except Exception:
        logger.debug("Firebase token verification failed", exc_info=True)
        raise UnauthorizedError()
