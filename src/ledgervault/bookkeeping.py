"""
Bookkeeping keys persisted in the key-value store outside the archive.

These keys carry live session, auth and backup state. They are never
written into a key-value snapshot and never overwritten by a restore.
"""

from typing import Dict, FrozenSet

AUTH_TOKEN_KEY = "authToken"
FIREBASE_TOKEN_KEY = "firebaseToken"
OWNER_ID_KEY = "firebaseUid"

FILE_ID_KEY = "backup.fileId"
LAST_SUCCESS_KEY = "backup.lastSuccessAt"
ACCOUNT_EMAIL_KEY = "backup.accountEmail"
ENABLED_KEY = "backup.enabled"
RESTORE_PENDING_KEY = "backup.restorePending"
MANIFEST_KEY = "backup.meta"

DENY_LIST: FrozenSet[str] = frozenset({
    AUTH_TOKEN_KEY,
    FIREBASE_TOKEN_KEY,
    FILE_ID_KEY,
    LAST_SUCCESS_KEY,
    ACCOUNT_EMAIL_KEY,
    ENABLED_KEY,
    RESTORE_PENDING_KEY,
    MANIFEST_KEY,
})


def is_denied(key: str) -> bool:
    """True if key must stay out of snapshots and restores"""
    return key in DENY_LIST


def filter_denied(entries: Dict[str, str]) -> Dict[str, str]:
    """Copy of entries without deny-listed keys"""
    return {key: value for key, value in entries.items() if key not in DENY_LIST}
