from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class EntryStatus(str, Enum):
    ACTIVE = "active"
    WINNER = "winner"


class AttributionOutcome(str, Enum):
    CREDITED = "credited"
    WINNER = "winner"
    CODE_NOT_FOUND = "code_not_found"


class CreateEntryRequest(BaseModel):
    email: str = Field(..., description="Contact email of the entrant")
    payment_confirmation_id: str = Field(..., description="Confirmation id returned by the payment gateway")
    amount_minor_units: int = Field(..., description="Amount paid in cents")
    referred_by_code: Optional[str] = Field(default=None, description="Referral code of the referring entry")
    user_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "email": "fan@example.com",
            "payment_confirmation_id": "pi_3OxAmpLe",
            "amount_minor_units": 1500,
            "referred_by_code": "TSDA1B2C3",
        }
    })


class PaymentIntentRequest(BaseModel):
    email: str
    amount_minor_units: int
    currency: Optional[str] = None


class ContestEntry(BaseModel):
    id: str
    email: str
    payment_confirmation_id: str
    amount_minor_units: int
    referral_code: str
    referred_by_code: Optional[str] = None
    user_id: Optional[str] = None
    referrals: int = 0
    status: EntryStatus = EntryStatus.ACTIVE
    created_at: datetime
    last_updated_at: datetime
    won_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_winner(self) -> bool:
        return self.status == EntryStatus.WINNER


class PrizeClaim(BaseModel):
    id: str
    entry_id: str
    prize: int
    currency: str
    won_at: datetime
    status: str = "pending_payout"


class AttributionResult(BaseModel):
    referral_code: str
    outcome: AttributionOutcome
    entry_id: Optional[str] = None
    referrals: Optional[int] = None
    winner_pending: bool = False

    @property
    def credited(self) -> bool:
        return self.outcome != AttributionOutcome.CODE_NOT_FOUND


class WinnerResult(BaseModel):
    entry_id: str
    transitioned: bool
    prize_claim_id: Optional[str] = None


class EntryResponse(BaseModel):
    id: str
    referral_code: str
    referral_link: str
    referral_credited: bool = False
    entry: ContestEntry
    message: str


class EmailCheckResponse(BaseModel):
    email: str
    entered: bool


class ReferralCodeCheck(BaseModel):
    referral_code: str
    valid: bool
    owner: Optional[str] = None


class ContestStats(BaseModel):
    total_users: int
    total_deposits: int
    average_deposit: int
    current_leader: int
    leader_email: str
    has_winner: bool
    winner_email: Optional[str] = None
    last_updated: datetime


class LeaderboardRow(BaseModel):
    rank: int
    email: str
    referrals: int
    referral_code: str
    status: EntryStatus
    joined: Optional[str] = None


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardRow]
    count: int


class PaymentAuthorization(BaseModel):
    confirmation_id: str
    client_secret: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    success: bool = True
    payment_intent_id: str
    client_secret: Optional[str] = None
