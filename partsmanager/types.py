"""
Shared enums and collection names.
"""

from __future__ import annotations

from enum import StrEnum

PRODUCTS_COLLECTION = "products"
USERS_COLLECTION = "users"
NOTIFICATIONS_COLLECTION = "notifications"
SYNC_SESSIONS_COLLECTION = "sync_sessions"
SCANS_SUBCOLLECTION = "scans"


class CommitType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    PERMANENT_DELETE = "permanent-delete"


class SessionStatus(StrEnum):
    ACTIVE = "active"
    CLOSED = "closed"


class Subscription(StrEnum):
    TRIAL = "trial"
    EXPIRED = "expired"
    PREMIUM = "premium"


# Users on these tiers keep their data local only.
LOCAL_ONLY_SUBSCRIPTIONS = frozenset({Subscription.TRIAL.value, Subscription.EXPIRED.value})
