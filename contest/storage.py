import copy
import operator
import threading
from typing import Any, Iterable, Optional
from uuid import uuid4

from .errors import DuplicateKeyError, EntryNotFoundError


UNIQUE_FIELDS = ("email", "referral_code", "payment_confirmation_id")

ASCENDING = "asc"
DESCENDING = "desc"

_COMPARATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


class EntryStore:
    """
    Contract the contest ledger needs from a document store.

    Records are plain dicts keyed by field name. Every returned record
    carries its store-assigned ``id``. Implementations raise
    ``StoreUnavailableError`` when the backend cannot be reached and
    ``DuplicateKeyError`` when an insert collides on a unique field.
    """

    def insert(self, record: dict) -> str:
        raise NotImplementedError

    def get_by_id(self, entry_id: str) -> Optional[dict]:
        raise NotImplementedError

    def find_one(self, field: str, value: Any) -> Optional[dict]:
        raise NotImplementedError

    def find_many(
        self,
        where: Optional[tuple[str, str, Any]] = None,
        order_by: Iterable[tuple[str, str]] = (),
        limit: Optional[int] = None,
    ) -> list[dict]:
        raise NotImplementedError

    def increment(self, entry_id: str, field: str, delta: int = 1, changes: Optional[dict] = None) -> int:
        """Atomically add ``delta`` to ``field`` and return the new value."""
        raise NotImplementedError

    def update(self, entry_id: str, changes: dict) -> None:
        raise NotImplementedError

    def transition_with_claim(self, entry_id: str, expected: dict, changes: dict, claim: dict) -> Optional[str]:
        """
        Apply ``changes`` only if every ``expected`` field matches, and record
        ``claim`` in the same atomic write.

        Returns the new claim id, or None when the expectations did not hold
        and nothing was written.
        """
        raise NotImplementedError

    def list_prize_claims(self) -> list[dict]:
        raise NotImplementedError


class InMemoryEntryStore(EntryStore):
    def __init__(self):
        self.entries: dict[str, dict] = {}
        self.prize_claims: dict[str, dict] = {}
        self.unique_index: dict[str, dict[Any, str]] = {field: {} for field in UNIQUE_FIELDS}
        self._lock = threading.Lock()

    def insert(self, record: dict) -> str:
        with self._lock:
            for field in UNIQUE_FIELDS:
                value = record.get(field)
                if value is not None and value in self.unique_index[field]:
                    raise DuplicateKeyError(field, value)

            entry_id = uuid4().hex
            stored = dict(record, id=entry_id)
            self.entries[entry_id] = stored
            for field in UNIQUE_FIELDS:
                if record.get(field) is not None:
                    self.unique_index[field][record[field]] = entry_id
            return entry_id

    def get_by_id(self, entry_id: str) -> Optional[dict]:
        with self._lock:
            record = self.entries.get(entry_id)
            return copy.deepcopy(record) if record else None

    def find_one(self, field: str, value: Any) -> Optional[dict]:
        with self._lock:
            if field in self.unique_index:
                entry_id = self.unique_index[field].get(value)
                return copy.deepcopy(self.entries[entry_id]) if entry_id else None
            for record in self.entries.values():
                if record.get(field) == value:
                    return copy.deepcopy(record)
            return None

    def find_many(
        self,
        where: Optional[tuple[str, str, Any]] = None,
        order_by: Iterable[tuple[str, str]] = (),
        limit: Optional[int] = None,
    ) -> list[dict]:
        with self._lock:
            records = [copy.deepcopy(r) for r in self.entries.values()]

        if where:
            field, op, value = where
            compare = _COMPARATORS[op]
            records = [r for r in records if r.get(field) is not None and compare(r[field], value)]

        # Stable sorts applied from the least significant key
        for field, direction in reversed(list(order_by)):
            records.sort(key=lambda r: r.get(field), reverse=direction == DESCENDING)

        if limit is not None:
            records = records[:limit]
        return records

    def increment(self, entry_id: str, field: str, delta: int = 1, changes: Optional[dict] = None) -> int:
        with self._lock:
            record = self._require(entry_id)
            record[field] = (record.get(field) or 0) + delta
            if changes:
                record.update(changes)
            return record[field]

    def update(self, entry_id: str, changes: dict) -> None:
        with self._lock:
            self._require(entry_id).update(changes)

    def transition_with_claim(self, entry_id: str, expected: dict, changes: dict, claim: dict) -> Optional[str]:
        with self._lock:
            record = self._require(entry_id)
            if any(record.get(k) != v for k, v in expected.items()):
                return None
            claim_id = uuid4().hex
            record.update(changes)
            self.prize_claims[claim_id] = dict(claim, id=claim_id)
            return claim_id

    def list_prize_claims(self) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(c) for c in self.prize_claims.values()]

    def _require(self, entry_id: str) -> dict:
        record = self.entries.get(entry_id)
        if record is None:
            raise EntryNotFoundError(entry_id)
        return record
