from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .errors import (
    InvalidEntryError, DuplicateEmailError, DuplicatePaymentError, EntryNotFoundError,
    StoreUnavailableError, LedgerInternalError, PaymentGatewayError,
)
from .models import (
    CreateEntryRequest, PaymentIntentRequest, EntryResponse, EmailCheckResponse,
    ReferralCodeCheck, ContestStats, LeaderboardResponse, PaymentIntentResponse,
)
from .payments import PaymentGateway, StripeGateway
from .service import ContestLedger, mask_email, normalize_code
from .storage import InMemoryEntryStore


def build_ledger(settings: Settings) -> ContestLedger:
    if settings.store.backend == "firestore":
        from .firestore_store import FirestoreEntryStore, connect_firestore
        store = FirestoreEntryStore(connect_firestore(settings.firebase), timeout=settings.store.timeout_seconds)
    elif settings.store.backend == "memory":
        store = InMemoryEntryStore()
    else:
        raise ValueError(f"Unknown store backend {settings.store.backend!r}")
    return ContestLedger(store, config=settings.contest)


def build_gateway(settings: Settings) -> Optional[PaymentGateway]:
    if not settings.payments.stripe_secret_key:
        return None
    return StripeGateway(settings.payments.stripe_secret_key, description=settings.payments.description)


def create_app(
    settings: Optional[Settings] = None,
    ledger: Optional[ContestLedger] = None,
    gateway: Optional[PaymentGateway] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or load_settings()
    ledger = ledger or build_ledger(settings)
    if gateway is None:
        gateway = build_gateway(settings)

    app = FastAPI(
        title="Contest Ledger API",
        description="Contest entries, referral attribution, winner detection and leaderboards",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.ledger = ledger
    app.state.gateway = gateway

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Contest data is temporarily unavailable", "retryable": True},
        )

    @app.exception_handler(LedgerInternalError)
    async def internal_error(request: Request, exc: LedgerInternalError):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal error", "retryable": False},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {
            "status": "healthy",
            "service": "contest-ledger",
            "store": settings.store.backend,
            "payments_configured": gateway is not None,
        }

    @app.post("/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED, tags=["Entries"])
    def create_entry(request: CreateEntryRequest) -> EntryResponse:
        try:
            return ledger.create_entry(request)
        except DuplicateEmailError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="already_entered")
        except DuplicatePaymentError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="payment_already_used")
        except InvalidEntryError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/entries/check-email", response_model=EmailCheckResponse, tags=["Entries"])
    def check_email(email: str) -> EmailCheckResponse:
        try:
            entered = ledger.is_email_entered(email)
        except InvalidEntryError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return EmailCheckResponse(email=email.strip().lower(), entered=entered)

    @app.get("/stats", response_model=ContestStats, tags=["Contest"])
    def get_stats() -> ContestStats:
        return ledger.get_stats()

    @app.get("/leaderboard", response_model=LeaderboardResponse, tags=["Contest"])
    def get_leaderboard(limit: int = Query(default=10)) -> LeaderboardResponse:
        try:
            return ledger.get_leaderboard(limit)
        except InvalidEntryError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/referrals/{code}", response_model=ReferralCodeCheck, tags=["Referrals"])
    def validate_referral_code(code: str) -> ReferralCodeCheck:
        try:
            entry = ledger.find_by_referral_code(code)
        except EntryNotFoundError:
            return ReferralCodeCheck(referral_code=normalize_code(code), valid=False)
        return ReferralCodeCheck(referral_code=entry.referral_code, valid=True, owner=mask_email(entry.email))

    @app.post("/payments/intent", response_model=PaymentIntentResponse, tags=["Payments"])
    def create_payment_intent(request: PaymentIntentRequest) -> PaymentIntentResponse:
        if gateway is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment system not configured")
        try:
            email = ledger.ensure_can_enter(request.email, request.amount_minor_units)
        except DuplicateEmailError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="already_entered")
        except InvalidEntryError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        try:
            authorization = gateway.create_authorization(
                request.amount_minor_units, request.currency or settings.contest.currency, email
            )
        except PaymentGatewayError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
        return PaymentIntentResponse(
            payment_intent_id=authorization.confirmation_id,
            client_secret=authorization.client_secret,
        )

    return app


if __name__ == "__main__":
    import uvicorn
    from .log import setup_logging

    settings = load_settings()
    setup_logging(settings.logging.level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)
