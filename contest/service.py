import logging
import secrets
import string
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from .config import ContestConfig
from .errors import (
    LedgerServiceError,
    InvalidEntryError,
    DuplicateEmailError,
    DuplicatePaymentError,
    EntryNotFoundError,
    StoreUnavailableError,
    LedgerInternalError,
    DuplicateKeyError,
)
from .models import (
    EntryStatus,
    AttributionOutcome,
    AttributionResult,
    WinnerResult,
    ContestEntry,
    CreateEntryRequest,
    EntryResponse,
    ContestStats,
    LeaderboardRow,
    LeaderboardResponse,
)
from .storage import EntryStore, InMemoryEntryStore, ASCENDING, DESCENDING

logger = logging.getLogger(__name__)

REFERRAL_CODE_PREFIX = "TSD"
REFERRAL_CODE_LENGTH = 6
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
MASK_SUFFIX = "***"
NO_LEADER = "None"
MAX_LEADERBOARD_LIMIT = 100


def generate_referral_code() -> str:
    suffix = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
    return REFERRAL_CODE_PREFIX + suffix


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def mask_email(email: Optional[str]) -> str:
    if not email:
        return "Anonymous"
    return email[:3] + MASK_SUFFIX


def to_major_units(minor_units) -> int:
    """Convert cents to whole currency units, rounding halves up."""
    major = Decimal(minor_units) / 100
    return int(major.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ContestLedger:
    """
    Contest entries, referral attribution, winner detection and the
    statistics derived from them.

    All state lives in the injected ``EntryStore``; the ledger itself holds
    none, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        store: Optional[EntryStore] = None,
        config: Optional[ContestConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        code_factory: Optional[Callable[[], str]] = None,
    ):
        self.store = store or InMemoryEntryStore()
        self.config = config or ContestConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._code_factory = code_factory or generate_referral_code

    def create_entry(self, request: CreateEntryRequest) -> EntryResponse:
        email = self.ensure_can_enter(request.email, request.amount_minor_units)
        if not (request.payment_confirmation_id or "").strip():
            raise InvalidEntryError("Payment confirmation id is required")

        referred_by = normalize_code(request.referred_by_code) or None
        with self._guard("create_entry"):
            record = self._insert_entry(email, request, referred_by)

        logger.info(
            "Contest entry created with code %s", record["referral_code"],
            extra={"operation": "create_entry", "entry_id": record["id"]},
        )

        credited = False
        if referred_by:
            try:
                credited = self.attribute_referral(referred_by).credited
            except LedgerServiceError as e:
                # Entry stands; the referrer simply misses this credit
                logger.warning(
                    "Referral credit for %s not applied: %s", referred_by, e,
                    extra={"operation": "create_entry", "entry_id": record["id"]},
                )

        entry = ContestEntry(**record)
        return EntryResponse(
            id=entry.id,
            referral_code=entry.referral_code,
            referral_link=self.referral_link(entry.referral_code),
            referral_credited=credited,
            entry=entry,
            message="Contest entry created successfully",
        )

    def attribute_referral(self, referral_code: str) -> AttributionResult:
        code = normalize_code(referral_code)
        with self._guard("attribute_referral"):
            referrer = self.store.find_one("referral_code", code) if code else None
            if referrer is None:
                logger.info("Referral code %r not found, no credit applied", code,
                            extra={"operation": "attribute_referral"})
                return AttributionResult(referral_code=code, outcome=AttributionOutcome.CODE_NOT_FOUND)

            referrals = self.store.increment(
                referrer["id"], "referrals", 1, changes={"last_updated_at": self._clock()}
            )

        outcome = AttributionOutcome.CREDITED
        winner_pending = False
        # The store-confirmed value decides; concurrent credits each see a distinct count
        if referrals >= self.config.win_threshold:
            try:
                if self.mark_winner(referrer["id"]).transitioned:
                    outcome = AttributionOutcome.WINNER
            except LedgerServiceError as e:
                # The credit is committed; the next credit past the threshold retries the transition
                winner_pending = True
                logger.warning(
                    "Winner transition deferred at %d referrals: %s", referrals, e,
                    extra={"operation": "attribute_referral", "entry_id": referrer["id"]},
                )

        logger.debug("Referral code %s now has %d referrals", code, referrals,
                     extra={"operation": "attribute_referral", "entry_id": referrer["id"]})
        return AttributionResult(
            referral_code=code, outcome=outcome, entry_id=referrer["id"], referrals=referrals,
            winner_pending=winner_pending,
        )

    def mark_winner(self, entry_id: str) -> WinnerResult:
        with self._guard("mark_winner", entry_id):
            now = self._clock()
            # Status change and prize claim commit together or not at all
            claim_id = self.store.transition_with_claim(
                entry_id,
                expected={"status": EntryStatus.ACTIVE.value},
                changes={"status": EntryStatus.WINNER.value, "won_at": now, "last_updated_at": now},
                claim={
                    "entry_id": entry_id,
                    "prize": self.config.prize_amount,
                    "currency": self.config.currency.upper(),
                    "won_at": now,
                    "status": "pending_payout",
                },
            )
        if claim_id is None:
            return WinnerResult(entry_id=entry_id, transitioned=False)

        logger.info("Winner detected", extra={"operation": "mark_winner", "entry_id": entry_id})
        return WinnerResult(entry_id=entry_id, transitioned=True, prize_claim_id=claim_id)

    def get_stats(self) -> ContestStats:
        with self._guard("get_stats"):
            records = self.store.find_many()

        total_users = len(records)
        total_minor = sum(r.get("amount_minor_units") or 0 for r in records)

        leader = min(records, key=_leader_key) if records else None
        winners = [r for r in records if r.get("status") == EntryStatus.WINNER.value]
        winner = min(winners, key=lambda r: r.get("won_at") or r["created_at"]) if winners else None

        return ContestStats(
            total_users=total_users,
            total_deposits=to_major_units(total_minor),
            average_deposit=to_major_units(Decimal(total_minor) / total_users) if total_users else 0,
            current_leader=(leader.get("referrals") or 0) if leader else 0,
            leader_email=mask_email(leader["email"]) if leader else NO_LEADER,
            has_winner=winner is not None,
            winner_email=mask_email(winner["email"]) if winner else None,
            last_updated=self._clock(),
        )

    def get_leaderboard(self, limit: int = 10) -> LeaderboardResponse:
        if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
            raise InvalidEntryError(f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}")

        with self._guard("get_leaderboard"):
            records = self.store.find_many(
                where=("referrals", ">", 0),
                order_by=[("referrals", DESCENDING), ("created_at", ASCENDING)],
                limit=limit,
            )

        rows = [
            LeaderboardRow(
                rank=rank,
                email=mask_email(r.get("email")),
                referrals=r.get("referrals") or 0,
                referral_code=r["referral_code"],
                status=r.get("status", EntryStatus.ACTIVE.value),
                joined=r["created_at"].date().isoformat() if r.get("created_at") else None,
            )
            for rank, r in enumerate(records, start=1)
        ]
        return LeaderboardResponse(entries=rows, count=len(rows))

    def is_email_entered(self, email: str) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            raise InvalidEntryError("Email is required")
        with self._guard("is_email_entered"):
            return self.store.find_one("email", normalized) is not None

    def ensure_can_enter(self, email: str, amount_minor_units: int) -> str:
        """Validate contact details and reject emails already entered; returns the normalized email."""
        normalized = normalize_email(email)
        if "@" not in normalized:
            raise InvalidEntryError("Valid email required")
        if amount_minor_units is None or amount_minor_units < self.config.min_amount_minor_units:
            raise InvalidEntryError(
                f"Minimum amount is {self.config.min_amount_minor_units} minor units"
            )
        if self.is_email_entered(normalized):
            logger.info("Repeat entry attempt rejected", extra={"operation": "ensure_can_enter"})
            raise DuplicateEmailError(normalized)
        return normalized

    def find_by_referral_code(self, referral_code: str) -> ContestEntry:
        code = normalize_code(referral_code)
        with self._guard("find_by_referral_code"):
            record = self.store.find_one("referral_code", code) if code else None
        if record is None:
            raise EntryNotFoundError(code, kind="referral code")
        return ContestEntry(**record)

    def get_entry(self, entry_id: str) -> ContestEntry:
        with self._guard("get_entry", entry_id):
            record = self.store.get_by_id(entry_id)
        if record is None:
            raise EntryNotFoundError(entry_id)
        return ContestEntry(**record)

    def referral_link(self, referral_code: str) -> str:
        return f"{self.config.referral_base_url.rstrip('/')}/{referral_code}"

    def _insert_entry(self, email: str, request: CreateEntryRequest, referred_by: Optional[str]) -> dict:
        attempts = self.config.code_attempts
        for attempt in range(1, attempts + 1):
            now = self._clock()
            record = {
                "email": email,
                "payment_confirmation_id": request.payment_confirmation_id.strip(),
                "amount_minor_units": request.amount_minor_units,
                "referral_code": self._code_factory(),
                "referred_by_code": referred_by,
                "user_id": request.user_id,
                "referrals": 0,
                "status": EntryStatus.ACTIVE.value,
                "created_at": now,
                "last_updated_at": now,
            }
            try:
                entry_id = self.store.insert(record)
            except DuplicateKeyError as e:
                if e.field == "referral_code":
                    logger.debug("Referral code collision on attempt %d", attempt,
                                 extra={"operation": "create_entry"})
                    continue
                if e.field == "email":
                    raise DuplicateEmailError(email) from e
                if e.field == "payment_confirmation_id":
                    raise DuplicatePaymentError(record["payment_confirmation_id"]) from e
                raise
            return dict(record, id=entry_id)

        raise LedgerInternalError(f"Could not generate a unique referral code in {attempts} attempts")

    @contextmanager
    def _guard(self, operation: str, entry_id: Optional[str] = None):
        context = {"operation": operation, "entry_id": entry_id}
        try:
            yield
        except StoreUnavailableError as e:
            logger.error("Entry store unavailable: %s", e, extra=context)
            raise
        except LedgerInternalError as e:
            logger.error("%s", e, extra=context)
            raise
        except LedgerServiceError:
            raise
        except Exception as e:
            logger.exception("Unexpected ledger failure", extra=context)
            raise LedgerInternalError(f"{operation} failed: {e}") from e


def _leader_key(record: dict):
    # Most referrals first, earliest entry wins a tie
    return (-(record.get("referrals") or 0), record["created_at"])
