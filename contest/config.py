"""Configuration management for the contest ledger service."""
import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv


class StoreConfig(BaseModel):
    """Entry store settings."""
    backend: str = Field(
        default="memory",
        description="Store backend: memory or firestore"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout applied to every store call"
    )


class FirebaseConfig(BaseModel):
    """Firestore project and credentials."""
    project_id: Optional[str] = None
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON file"
    )
    private_key: Optional[str] = None
    private_key_id: Optional[str] = None
    client_email: Optional[str] = None
    client_id: Optional[str] = None
    app_name: str = Field(
        default="contest-ledger",
        description="Name of the firebase_admin app owned by this service"
    )

    def service_account_info(self) -> Optional[dict]:
        """Assemble a service-account certificate from individual variables."""
        if not (self.project_id and self.private_key and self.client_email):
            return None
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "private_key_id": self.private_key_id,
            # Deployment dashboards store the key with escaped newlines
            "private_key": self.private_key.replace("\\n", "\n"),
            "client_email": self.client_email,
            "client_id": self.client_id,
            "token_uri": "https://oauth2.googleapis.com/token",
        }


class ContestConfig(BaseModel):
    """Contest rules."""
    win_threshold: int = Field(
        default=1000,
        ge=1,
        description="Referrals needed to win"
    )
    min_amount_minor_units: int = Field(
        default=1000,
        ge=1,
        description="Minimum entry amount in cents"
    )
    prize_amount: int = Field(
        default=1000,
        description="Prize recorded for a winner, in major units"
    )
    currency: str = Field(default="usd")
    referral_base_url: str = Field(
        default="https://thesportsdugout.com/ref",
        description="Base of shareable referral links"
    )
    code_attempts: int = Field(
        default=5,
        ge=1,
        description="Referral code generation attempts before giving up"
    )


class PaymentConfig(BaseModel):
    """Payment gateway settings."""
    stripe_secret_key: Optional[str] = None
    description: str = Field(default="Sports Dugout Contest Entry")


class LoggingConfig(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level"
    )


class Settings(BaseModel):
    """Main service configuration."""
    store: StoreConfig = Field(default_factory=StoreConfig)
    firebase: FirebaseConfig = Field(default_factory=FirebaseConfig)
    contest: ContestConfig = Field(default_factory=ContestConfig)
    payments: PaymentConfig = Field(default_factory=PaymentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    """Load configuration from environment variables."""
    load_dotenv()

    return Settings(
        store=StoreConfig(
            backend=os.getenv("STORE_BACKEND", "memory").lower(),
            timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "10")),
        ),
        firebase=FirebaseConfig(
            project_id=os.getenv("FIREBASE_PROJECT_ID"),
            credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH"),
            private_key=os.getenv("FIREBASE_PRIVATE_KEY"),
            private_key_id=os.getenv("FIREBASE_PRIVATE_KEY_ID"),
            client_email=os.getenv("FIREBASE_CLIENT_EMAIL"),
            client_id=os.getenv("FIREBASE_CLIENT_ID"),
        ),
        contest=ContestConfig(
            win_threshold=int(os.getenv("CONTEST_WIN_THRESHOLD", "1000")),
            min_amount_minor_units=int(os.getenv("CONTEST_MIN_AMOUNT", "1000")),
            prize_amount=int(os.getenv("CONTEST_PRIZE_AMOUNT", "1000")),
            currency=os.getenv("CONTEST_CURRENCY", "usd").lower(),
            code_attempts=int(os.getenv("CONTEST_CODE_ATTEMPTS", "5")),
            referral_base_url=os.getenv("REFERRAL_BASE_URL", "https://thesportsdugout.com/ref"),
        ),
        payments=PaymentConfig(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
        ),
        logging=LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
        ),
        cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    )
