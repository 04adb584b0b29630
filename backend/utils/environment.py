"""
Environment Configuration Utility

Loads and validates process configuration once at startup.
Fails fast with clear error messages if required variables are missing.
"""
import os
import logging
from pathlib import Path
from typing import List, Optional, Literal, Dict, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from token_wallet.config import MPESA_CONFIG, DEFAULT_TOKEN_PRICE

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent.parent

DEFAULT_JWT_SECRET = "change-this-secret-key"


class Settings(BaseModel):
    """Runtime configuration for the document store."""
    mongo_url: str
    db_name: str = "document_store"
    jwt_secret: str = DEFAULT_JWT_SECRET
    token_price: int = Field(DEFAULT_TOKEN_PRICE, ge=1)

    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = ""
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "https://yourdomain.com/api/mpesa/callback"
    mpesa_env: Literal["sandbox", "production"] = "sandbox"

    port: int = 3000
    base_url: str = "http://localhost:3000"
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    document_catalog_path: Optional[str] = None

    @property
    def mpesa_base_url(self) -> str:
        """Daraja API base URL for the configured environment."""
        return MPESA_CONFIG[self.mpesa_env]["api_base"]

    def describe(self) -> Dict[str, Any]:
        """Settings safe to log (no secrets)."""
        return {
            "db_name": self.db_name,
            "token_price": self.token_price,
            "mpesa_env": self.mpesa_env,
            "mpesa_shortcode": self.mpesa_shortcode,
            "mpesa_callback_url": self.mpesa_callback_url,
            "port": self.port,
            "base_url": self.base_url,
            "document_catalog_path": self.document_catalog_path,
        }


def validate_required_env_vars():
    """
    Validate all critical environment variables exist before the app starts.
    Raises ValueError with clear error message if required variables are missing.
    """
    required_vars = {
        "MONGO_URL": "MongoDB connection string (e.g., mongodb://localhost:27017/?replicaSet=rs0)",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.environ.get(var):
            missing.append(f"  - {var}: {description}")

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check your .env file or environment configuration.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the environment (and backend/.env when present)."""
    load_dotenv(env_file or ROOT_DIR / '.env')
    validate_required_env_vars()

    env = os.environ
    mpesa_env = env.get("MPESA_ENV", "sandbox").lower()
    if mpesa_env not in MPESA_CONFIG:
        logger.warning(f"Invalid MPESA_ENV '{mpesa_env}', defaulting to 'sandbox'")
        mpesa_env = "sandbox"

    settings = Settings(
        mongo_url=env["MONGO_URL"],
        db_name=env.get("DB_NAME") or "document_store",
        jwt_secret=env.get("JWT_SECRET") or DEFAULT_JWT_SECRET,
        token_price=int(env.get("TOKEN_PRICE", DEFAULT_TOKEN_PRICE)),
        mpesa_consumer_key=env.get("MPESA_CONSUMER_KEY", ""),
        mpesa_consumer_secret=env.get("MPESA_CONSUMER_SECRET", ""),
        mpesa_shortcode=env.get("MPESA_SHORTCODE", ""),
        mpesa_passkey=env.get("MPESA_PASSKEY", ""),
        mpesa_callback_url=env.get("MPESA_CALLBACK_URL") or "https://yourdomain.com/api/mpesa/callback",
        mpesa_env=mpesa_env,
        port=int(env.get("PORT", 3000)),
        base_url=(env.get("BASE_URL") or "http://localhost:3000").rstrip("/"),
        cors_origins=[
            origin.strip()
            for origin in env.get("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ],
        document_catalog_path=env.get("DOCUMENT_CATALOG_PATH") or None,
    )

    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET not set, using the development default")

    return settings
