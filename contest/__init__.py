"""
Contest Ledger for a referral-driven sports contest

This package provides:
- Paid contest entries with unique emails and referral codes
- Referral attribution with atomic counting
- Winner detection at the referral threshold, fired exactly once
- Contest statistics and a masked leaderboard
"""

from .models import (
    EntryStatus,
    AttributionOutcome,
    ContestEntry,
    CreateEntryRequest,
    ContestStats,
    LeaderboardRow,
)
from .errors import (
    LedgerServiceError,
    InvalidEntryError,
    DuplicateEmailError,
    EntryNotFoundError,
    StoreUnavailableError,
    LedgerInternalError,
)
from .storage import EntryStore, InMemoryEntryStore
from .service import ContestLedger

__all__ = [
    "EntryStatus",
    "AttributionOutcome",
    "ContestEntry",
    "CreateEntryRequest",
    "ContestStats",
    "LeaderboardRow",
    "LedgerServiceError",
    "InvalidEntryError",
    "DuplicateEmailError",
    "EntryNotFoundError",
    "StoreUnavailableError",
    "LedgerInternalError",
    "EntryStore",
    "InMemoryEntryStore",
    "ContestLedger",
]
