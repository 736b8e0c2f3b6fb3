"""
Firestore-backed entry store.

Collections:
- contest_entries: one document per contest entry
- contest_emails: uniqueness reservation per normalized email
- referral_codes: uniqueness reservation per referral code
- payments: one document per payment confirmation, linked to its entry
- winners: prize claims written by the winning transition
"""

import hashlib
import logging
import re
from contextlib import contextmanager
from typing import Any, Iterable, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from .config import FirebaseConfig
from .errors import DuplicateKeyError, EntryNotFoundError, StoreUnavailableError
from .storage import EntryStore, DESCENDING

logger = logging.getLogger(__name__)

ENTRIES = "contest_entries"
EMAILS = "contest_emails"
REFERRAL_CODES = "referral_codes"
PAYMENTS = "payments"
WINNERS = "winners"

_SAFE_DOC_ID = re.compile(r"^[A-Za-z0-9_\-]{1,200}$")


def connect_firestore(config: FirebaseConfig):
    """Return a Firestore client for the service's own firebase_admin app."""
    try:
        app = firebase_admin.get_app(config.app_name)
    except ValueError:
        info = config.service_account_info()
        if config.credentials_path:
            cred = credentials.Certificate(config.credentials_path)
        elif info:
            cred = credentials.Certificate(info)
        else:
            cred = credentials.ApplicationDefault()
        options = {"projectId": config.project_id} if config.project_id else None
        app = firebase_admin.initialize_app(cred, options, name=config.app_name)
        logger.info("Firebase app %s initialized", config.app_name)
    return firestore.client(app)


def doc_key(value: str, hashed: bool = False) -> str:
    """Document id for a reservation; hashed when the raw value is not a safe id."""
    if not hashed and _SAFE_DOC_ID.match(value):
        return value
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class FirestoreEntryStore(EntryStore):
    def __init__(self, client, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout
        self.entries = client.collection(ENTRIES)

    def insert(self, record: dict) -> str:
        entry_ref = self.entries.document()
        reservations = {
            "email": self.client.collection(EMAILS).document(doc_key(record["email"], hashed=True)),
            "referral_code": self.client.collection(REFERRAL_CODES).document(doc_key(record["referral_code"])),
            "payment_confirmation_id": self.client.collection(PAYMENTS).document(
                doc_key(record["payment_confirmation_id"])
            ),
        }

        @firestore.transactional
        def insert_entry(transaction):
            for field, ref in reservations.items():
                if ref.get(transaction=transaction, timeout=self.timeout).exists:
                    raise DuplicateKeyError(field, record[field])

            transaction.set(entry_ref, record)
            transaction.set(reservations["email"], {"entry_id": entry_ref.id})
            transaction.set(reservations["referral_code"], {"entry_id": entry_ref.id})
            transaction.set(reservations["payment_confirmation_id"], {
                "email": record["email"],
                "amount": record["amount_minor_units"],
                "status": "completed",
                "contest_entry_id": entry_ref.id,
                "created": record["created_at"],
            })

        with self._call("insert"):
            insert_entry(self.client.transaction())
        return entry_ref.id

    def get_by_id(self, entry_id: str) -> Optional[dict]:
        with self._call("get_by_id"):
            snapshot = self.entries.document(entry_id).get(timeout=self.timeout)
        return _to_record(snapshot) if snapshot.exists else None

    def find_one(self, field: str, value: Any) -> Optional[dict]:
        query = self.entries.where(filter=FieldFilter(field, "==", value)).limit(1)
        with self._call("find_one"):
            docs = list(query.stream(timeout=self.timeout))
        return _to_record(docs[0]) if docs else None

    def find_many(
        self,
        where: Optional[tuple[str, str, Any]] = None,
        order_by: Iterable[tuple[str, str]] = (),
        limit: Optional[int] = None,
    ) -> list[dict]:
        query = self.entries
        if where:
            query = query.where(filter=FieldFilter(*where))
        for field, direction in order_by:
            query = query.order_by(
                field,
                direction=firestore.Query.DESCENDING if direction == DESCENDING else firestore.Query.ASCENDING,
            )
        if limit is not None:
            query = query.limit(limit)
        with self._call("find_many"):
            return [_to_record(doc) for doc in query.stream(timeout=self.timeout)]

    def increment(self, entry_id: str, field: str, delta: int = 1, changes: Optional[dict] = None) -> int:
        ref = self.entries.document(entry_id)

        @firestore.transactional
        def increment_field(transaction):
            snapshot = ref.get(transaction=transaction, timeout=self.timeout)
            if not snapshot.exists:
                raise EntryNotFoundError(entry_id)
            value = ((snapshot.to_dict() or {}).get(field) or 0) + delta
            transaction.update(ref, dict(changes or {}, **{field: value}))
            return value

        with self._call("increment"):
            return increment_field(self.client.transaction())

    def update(self, entry_id: str, changes: dict) -> None:
        with self._call("update"):
            try:
                self.entries.document(entry_id).update(changes, timeout=self.timeout)
            except google_exceptions.NotFound as e:
                raise EntryNotFoundError(entry_id) from e

    def transition_with_claim(self, entry_id: str, expected: dict, changes: dict, claim: dict) -> Optional[str]:
        ref = self.entries.document(entry_id)
        claim_ref = self.client.collection(WINNERS).document()

        @firestore.transactional
        def conditional_transition(transaction):
            snapshot = ref.get(transaction=transaction, timeout=self.timeout)
            if not snapshot.exists:
                raise EntryNotFoundError(entry_id)
            current = snapshot.to_dict() or {}
            if any(current.get(k) != v for k, v in expected.items()):
                return None
            transaction.update(ref, changes)
            transaction.set(claim_ref, claim)
            return claim_ref.id

        with self._call("transition_with_claim"):
            return conditional_transition(self.client.transaction())

    def list_prize_claims(self) -> list[dict]:
        with self._call("list_prize_claims"):
            return [_to_record(doc) for doc in self.client.collection(WINNERS).stream(timeout=self.timeout)]

    @contextmanager
    def _call(self, operation: str):
        try:
            yield
        except google_exceptions.GoogleAPIError as e:
            raise StoreUnavailableError(f"Firestore {operation} failed: {e}", operation=operation) from e


def _to_record(snapshot) -> dict:
    record = snapshot.to_dict() or {}
    record["id"] = snapshot.id
    return record
