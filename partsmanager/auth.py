"""
Bearer token authentication for API routes.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException

from partsmanager.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _verify_firebase_token(token: str, settings: Settings) -> str:
    from firebase_admin import auth

    from partsmanager.firestore_store import get_firebase_app

    app = get_firebase_app(settings.firebase_service_account)
    try:
        decoded = auth.verify_id_token(token, app=app)
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError) as exc:
        logger.info("Rejected ID token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid authorization token") from exc
    return decoded["uid"]


def get_current_user_id(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Resolve the caller's user id from ``Authorization: Bearer <token>``.

    With in-memory backends the token itself is taken as the user id.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authorization token")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    if settings.use_in_memory_backends:
        return token
    return _verify_firebase_token(token, settings)
