"""
Error hierarchy for LedgerVault backup and restore operations.
"""


class LedgerVaultError(Exception):
    """Base exception for backup related failures"""
    pass


class SnapshotError(LedgerVaultError):
    """Raised when the staging directory cannot be prepared or written"""
    pass


class ArchiveError(LedgerVaultError):
    """Raised when packing or unpacking a backup archive fails"""
    pass


class RestoreError(LedgerVaultError):
    """Raised when a restore aborts or fails partway"""
    pass


class ConfigError(LedgerVaultError):
    """Raised for missing or invalid configuration values"""
    pass


__all__ = [
    "LedgerVaultError",
    "SnapshotError",
    "ArchiveError",
    "RestoreError",
    "ConfigError",
]
