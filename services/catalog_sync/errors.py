"""
Error taxonomy for the catalog sync layer.

Tier faults are values (ErrorKind on a SourceResult or CommitReceipt), not
exceptions: adapters report them, the loader and persister recover from them.
Exceptions are reserved for tier-internal signalling (SyncError, caught inside
adapters/persister) and for caller mistakes (TestNotFoundError).
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Why a tier could not serve or accept a snapshot."""
    UNREACHABLE = "unreachable"        # network, timeout, missing client, HTML error page
    MALFORMED = "malformed"            # payload fails schema/shape validation
    EMPTY = "empty"                    # valid but no records
    QUOTA_EXCEEDED = "quota_exceeded"  # local write rejected


class SyncError(Exception):
    """Raised by adapter writes; always carries an ErrorKind."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class QuotaExceededError(SyncError):
    """The local store refused a write because it would exceed its quota."""

    def __init__(self, detail: str = ""):
        super().__init__(ErrorKind.QUOTA_EXCEEDED, detail)


class TestNotFoundError(KeyError):
    """No test definition with the given id in the current snapshot."""

    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, test_id: str):
        super().__init__(test_id)
        self.test_id = test_id

    def __str__(self) -> str:
        return f"test definition '{self.test_id}' not found"
