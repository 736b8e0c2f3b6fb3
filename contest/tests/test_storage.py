"""
Unit Tests for the entry stores

Tests cover:
1. Unique field enforcement
2. Filtering, ordering and limits
3. Atomic increments and the winner transition with its prize claim
4. Firestore transactions and error translation
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from google.api_core import exceptions as google_exceptions

from contest.errors import DuplicateKeyError, EntryNotFoundError, StoreUnavailableError
from contest import firestore_store
from contest.firestore_store import FirestoreEntryStore, doc_key
from contest.storage import InMemoryEntryStore, ASCENDING, DESCENDING


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def record(n, referrals=0, **overrides):
    data = {
        "email": f"user{n}@x.com",
        "payment_confirmation_id": f"pi_{n}",
        "referral_code": f"TSD{n:06d}",
        "amount_minor_units": 1000,
        "referrals": referrals,
        "status": "active",
        "created_at": START + timedelta(minutes=n),
    }
    data.update(overrides)
    return data


class TestInMemoryEntryStore:
    """Tests for the in-memory store."""

    @pytest.mark.parametrize("field", ["email", "referral_code", "payment_confirmation_id"])
    def test_unique_fields(self, field):
        """Each unique field rejects a second record with the same value."""
        store = InMemoryEntryStore()
        store.insert(record(1))

        with pytest.raises(DuplicateKeyError) as exc_info:
            store.insert(record(2, **{field: record(1)[field]}))

        assert exc_info.value.field == field
        assert len(store.entries) == 1

    def test_find_one_and_get_by_id(self):
        """Lookups return copies carrying the store id."""
        store = InMemoryEntryStore()
        entry_id = store.insert(record(1))

        found = store.find_one("referral_code", "TSD000001")
        found["referrals"] = 99

        assert found["id"] == entry_id
        assert store.get_by_id(entry_id)["referrals"] == 0
        assert store.find_one("email", "nobody@x.com") is None
        assert store.find_one("status", "active")["id"] == entry_id
        assert store.get_by_id("missing") is None

    def test_find_many_filters_orders_and_limits(self):
        """Filter, then sort by each key in turn, then truncate."""
        store = InMemoryEntryStore()
        for n, referrals in enumerate([2, 0, 5, 2]):
            store.insert(record(n, referrals=referrals))

        rows = store.find_many(
            where=("referrals", ">", 0),
            order_by=[("referrals", DESCENDING), ("created_at", ASCENDING)],
            limit=2,
        )

        assert [r["email"] for r in rows] == ["user2@x.com", "user0@x.com"]
        assert len(store.find_many()) == 4

    def test_increment_returns_new_value(self):
        """Increments report the post-increment value and apply extra changes."""
        store = InMemoryEntryStore()
        entry_id = store.insert(record(1))

        assert store.increment(entry_id, "referrals", 1, changes={"last_updated_at": START}) == 1
        assert store.increment(entry_id, "referrals", 2) == 3
        assert store.get_by_id(entry_id)["last_updated_at"] == START

    def test_increment_missing_entry(self):
        """Incrementing an unknown entry is a not-found error."""
        with pytest.raises(EntryNotFoundError):
            InMemoryEntryStore().increment("missing", "referrals")

    def test_transition_with_claim(self):
        """The conditional change and its claim are written once, together."""
        store = InMemoryEntryStore()
        entry_id = store.insert(record(1))
        claim = {"entry_id": entry_id, "prize": 1000}

        claim_id = store.transition_with_claim(entry_id, {"status": "active"}, {"status": "winner"}, claim)
        again = store.transition_with_claim(entry_id, {"status": "active"}, {"status": "winner"}, claim)

        assert claim_id is not None
        assert again is None
        assert store.get_by_id(entry_id)["status"] == "winner"
        assert store.list_prize_claims() == [{"entry_id": entry_id, "prize": 1000, "id": claim_id}]

    def test_transition_missing_entry(self):
        """Transitioning an unknown entry writes no claim."""
        store = InMemoryEntryStore()

        with pytest.raises(EntryNotFoundError):
            store.transition_with_claim("missing", {"status": "active"}, {"status": "winner"}, {"prize": 1})

        assert store.list_prize_claims() == []


class _UnavailableDocument:
    def get(self, **kwargs):
        raise google_exceptions.ServiceUnavailable("backend down")


class _Collection:
    def document(self, doc_id=None):
        return _UnavailableDocument()


class _Client:
    def collection(self, name):
        return _Collection()


class TestFirestoreEntryStore:
    """Tests for Firestore helpers that need no backend."""

    def test_google_errors_become_store_unavailable(self):
        """API failures surface as store-unavailable errors."""
        store = FirestoreEntryStore(_Client(), timeout=1.0)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get_by_id("abc")

        assert exc_info.value.operation == "get_by_id"

    def test_doc_key(self):
        """Safe values are used verbatim; others are hashed."""
        assert doc_key("TSDAB12CD") == "TSDAB12CD"
        assert doc_key("pi_3OxAmpLe") == "pi_3OxAmpLe"
        assert len(doc_key("a/b")) == 64
        assert doc_key("a@x.com", hashed=True) == doc_key("a@x.com", hashed=True)
        assert doc_key("a@x.com", hashed=True) != "a@x.com"


class _Snapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self.exists = data is not None
        self._data = data

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class _DocumentRef:
    def __init__(self, collection, doc_id):
        self.collection = collection
        self.id = doc_id

    def get(self, transaction=None, timeout=None):
        self.collection.client.timeouts.append(timeout)
        return _Snapshot(self.id, self.collection.docs.get(self.id))


class _FakeCollection:
    def __init__(self, client):
        self.client = client
        self.docs = {}
        self._ids = count(1)

    def document(self, doc_id=None):
        return _DocumentRef(self, doc_id or f"doc{next(self._ids)}")

    def stream(self, timeout=None):
        return [_Snapshot(doc_id, data) for doc_id, data in self.docs.items()]


class _FakeTransaction:
    """Buffers writes and applies them on commit, like a Firestore transaction."""

    def __init__(self, fail_commit=False):
        self.writes = []
        self.fail_commit = fail_commit

    def set(self, ref, data):
        self.writes.append((ref, dict(data), False))

    def update(self, ref, data):
        self.writes.append((ref, dict(data), True))

    def commit(self):
        if self.fail_commit:
            raise google_exceptions.Aborted("too much contention")
        for ref, data, merge in self.writes:
            if merge:
                ref.collection.docs[ref.id].update(data)
            else:
                ref.collection.docs[ref.id] = data


class _FakeFirestore:
    def __init__(self):
        self.collections = {}
        self.timeouts = []
        self.fail_commits = False

    def collection(self, name):
        return self.collections.setdefault(name, _FakeCollection(self))

    def transaction(self):
        return _FakeTransaction(fail_commit=self.fail_commits)


def _run_in_transaction(body):
    def run(transaction, *args, **kwargs):
        result = body(transaction, *args, **kwargs)
        transaction.commit()
        return result
    return run


@pytest.fixture
def fake_client(monkeypatch):
    monkeypatch.setattr(firestore_store.firestore, "transactional", _run_in_transaction)
    return _FakeFirestore()


class TestFirestoreTransactions:
    """Tests for the transactional Firestore paths against an in-process fake client."""

    def test_insert_writes_entry_and_reservations(self, fake_client):
        """An insert stores the entry, both reservations and the payment record."""
        store = FirestoreEntryStore(fake_client, timeout=2.0)

        entry_id = store.insert(record(1))

        assert store.get_by_id(entry_id)["email"] == "user1@x.com"
        email_key = doc_key("user1@x.com", hashed=True)
        assert fake_client.collection(firestore_store.EMAILS).docs[email_key] == {"entry_id": entry_id}
        assert fake_client.collection(firestore_store.REFERRAL_CODES).docs["TSD000001"] == {"entry_id": entry_id}
        payment = fake_client.collection(firestore_store.PAYMENTS).docs["pi_1"]
        assert payment["contest_entry_id"] == entry_id
        assert payment["status"] == "completed"
        assert set(fake_client.timeouts) == {2.0}

    @pytest.mark.parametrize("field", ["email", "referral_code", "payment_confirmation_id"])
    def test_insert_rejects_reserved_values(self, fake_client, field):
        """A reserved unique value aborts the insert before anything is written."""
        store = FirestoreEntryStore(fake_client)
        store.insert(record(1))

        with pytest.raises(DuplicateKeyError) as exc_info:
            store.insert(record(2, **{field: record(1)[field]}))

        assert exc_info.value.field == field
        assert len(fake_client.collection(firestore_store.ENTRIES).docs) == 1

    def test_increment_returns_new_value(self, fake_client):
        """Increments read inside the transaction and report the committed value."""
        store = FirestoreEntryStore(fake_client)
        entry_id = store.insert(record(1))

        assert store.increment(entry_id, "referrals", 1, changes={"last_updated_at": START}) == 1
        assert store.increment(entry_id, "referrals", 2) == 3
        stored = store.get_by_id(entry_id)
        assert stored["referrals"] == 3
        assert stored["last_updated_at"] == START

    def test_increment_missing_entry(self, fake_client):
        """Incrementing an unknown document is a not-found error."""
        store = FirestoreEntryStore(fake_client)

        with pytest.raises(EntryNotFoundError):
            store.increment("missing", "referrals")

    def test_transition_with_claim(self, fake_client):
        """Status change and prize claim commit in the same transaction, once."""
        store = FirestoreEntryStore(fake_client)
        entry_id = store.insert(record(1))
        claim = {"entry_id": entry_id, "prize": 1000}

        claim_id = store.transition_with_claim(entry_id, {"status": "active"}, {"status": "winner"}, claim)
        again = store.transition_with_claim(entry_id, {"status": "active"}, {"status": "winner"}, claim)

        assert claim_id is not None
        assert again is None
        assert store.get_by_id(entry_id)["status"] == "winner"
        assert store.list_prize_claims() == [{"entry_id": entry_id, "prize": 1000, "id": claim_id}]

    def test_aborted_transition_writes_nothing(self, fake_client):
        """A failed commit leaves the entry active and records no claim."""
        store = FirestoreEntryStore(fake_client)
        entry_id = store.insert(record(1))
        fake_client.fail_commits = True

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.transition_with_claim(entry_id, {"status": "active"}, {"status": "winner"}, {"prize": 1000})

        assert exc_info.value.operation == "transition_with_claim"
        assert store.get_by_id(entry_id)["status"] == "active"
        assert store.list_prize_claims() == []
