import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

PAYMOB_API_URL = "https://accept.paymob.com/api"

ACCESS_TOKEN_LIFETIME = timedelta(minutes=15)
REFRESH_TOKEN_LIFETIME = timedelta(days=7)


class ConfigurationError(RuntimeError):
    """Raised at start-up when a required setting is missing."""


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


@dataclass(frozen=True)
class Settings:
    access_token_secret: str
    refresh_token_secret: str
    mongo_uri: str = "mongodb://localhost:27017/shop"
    environment: str = "development"
    paymob_api_key: str = ""
    paymob_integration_id: str = ""
    paymob_iframe_id: str = ""
    paymob_hmac_secret: str = ""
    paymob_api_url: str = PAYMOB_API_URL
    paymob_currency: str = "EGP"
    cors_allowed_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    port: int = 5000

    def __post_init__(self):
        missing = [
            name
            for name in ("access_token_secret", "refresh_token_secret")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required token secrets: {', '.join(missing)}"
            )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        access_secret = _clean(os.getenv("ACCESS_TOKEN_SECRET"))
        refresh_secret = _clean(os.getenv("REFRESH_TOKEN_SECRET"))
        if not access_secret:
            raise ConfigurationError("ACCESS_TOKEN_SECRET is not defined in environment variables")
        if not refresh_secret:
            raise ConfigurationError("REFRESH_TOKEN_SECRET is not defined in environment variables")

        origins = [
            origin.strip()
            for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]

        try:
            port = int(os.getenv("PORT", "5000"))
        except (TypeError, ValueError):
            port = 5000

        return cls(
            access_token_secret=access_secret,
            refresh_token_secret=refresh_secret,
            mongo_uri=_clean(os.getenv("MONGO_URI")) or "mongodb://localhost:27017/shop",
            environment=_clean(os.getenv("APP_ENV")).lower() or "development",
            paymob_api_key=_clean(os.getenv("PAYMOB_API_KEY")),
            paymob_integration_id=_clean(os.getenv("PAYMOB_INTEGRATION_ID")),
            paymob_iframe_id=_clean(os.getenv("PAYMOB_IFRAME_ID")),
            paymob_hmac_secret=_clean(os.getenv("PAYMOB_HMAC_SECRET")),
            paymob_api_url=(_clean(os.getenv("PAYMOB_API_URL")) or PAYMOB_API_URL).rstrip("/"),
            paymob_currency=_clean(os.getenv("PAYMOB_CURRENCY")) or "EGP",
            cors_allowed_origins=origins,
            port=port,
        )
