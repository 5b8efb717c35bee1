"""Tests for the bookkeeping deny-list."""

from ledgervault.bookkeeping import (
    AUTH_TOKEN_KEY,
    DENY_LIST,
    FILE_ID_KEY,
    OWNER_ID_KEY,
    RESTORE_PENDING_KEY,
    filter_denied,
    is_denied,
)


class TestDenyList:

    def test_backup_and_auth_keys_denied(self):
        assert is_denied(AUTH_TOKEN_KEY)
        assert is_denied(FILE_ID_KEY)
        assert is_denied(RESTORE_PENDING_KEY)

    def test_owner_id_travels_with_backup(self):
        assert not is_denied(OWNER_ID_KEY)
        assert OWNER_ID_KEY not in DENY_LIST

    def test_filter_denied(self):
        entries = {"theme": "dark", AUTH_TOKEN_KEY: "T1", FILE_ID_KEY: "abc123"}

        assert filter_denied(entries) == {"theme": "dark"}
        assert entries[AUTH_TOKEN_KEY] == "T1"
