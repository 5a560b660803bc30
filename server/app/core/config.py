from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Any, Dict, List, Optional
import json
import os
from dotenv import load_dotenv
import logging

logger = logging.getLogger(__name__)

# Load environment variables from .env file with error handling
try:
    load_dotenv(encoding='utf-8')
except UnicodeDecodeError:
    logger.warning(".env file encoding error, trying without encoding specification")
    try:
        load_dotenv()
    except Exception as e:
        logger.warning(f"Could not load .env file: {e}")


DEFAULT_FEE_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "dedicated-desk": {"amount": "5000", "cusaFee": "500", "parkingFee": "0"},
    "private-office": {"amount": "15000", "cusaFee": "1500", "parkingFee": "1000"},
    "virtual-office": {"amount": "3000", "cusaFee": "0", "parkingFee": "0"},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Hub Billing API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Document store: "mongo" or "memory"
    STORE_BACKEND: str = "mongo"

    # MongoDB Database
    MONGODB_URL: Optional[str] = None
    MONGODB_HOST: str = "localhost"
    MONGODB_PORT: int = 27017
    MONGODB_DATABASE: str = "hub_db"
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[str] = None

    # Store read retries (seconds to wait before each retry)
    STORE_READ_RETRY_DELAYS: List[float] = [0.2, 0.5]
    STORE_CAS_MAX_ATTEMPTS: int = 5

    # Billing
    BILLING_GRACE_PERIOD_DAYS: int = 15
    BILLING_DEFAULT_CYCLE: str = "monthly"
    FEE_SCHEDULE: Dict[str, Dict[str, Any]] = DEFAULT_FEE_SCHEDULE
    FEE_OVERRIDES: Dict[str, Dict[str, Any]] = {}

    # Recurring billing loop
    BILLING_SCHEDULER_ENABLED: bool = False
    BILLING_SCHEDULER_INTERVAL_SECONDS: int = 3600

    # Email Configuration (Resend HTTP API)
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM: str = "Hub Billing <billing@example.com>"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        """Parse CORS origins from string if needed."""
        if isinstance(v, str) and v:
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        production_origins = os.getenv("PRODUCTION_ORIGINS", "").split(",")
        return [origin.strip() for origin in production_origins if origin.strip()]

    @field_validator("STORE_READ_RETRY_DELAYS", mode="before")
    @classmethod
    def assemble_retry_delays(cls, v):
        """Parse retry delays from a comma separated string if needed."""
        if isinstance(v, str):
            return [float(i) for i in v.split(",") if i.strip()]
        return v

    @field_validator("FEE_SCHEDULE", "FEE_OVERRIDES", mode="before")
    @classmethod
    def assemble_fee_tables(cls, v):
        """Parse fee tables from JSON if given as a string."""
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v

    @field_validator("STORE_BACKEND", "BILLING_DEFAULT_CYCLE", mode="before")
    @classmethod
    def lowercase_choice(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    class Config:
        case_sensitive = True
        env_file = ".env"
        env_file_encoding = "utf-8"


# Create global settings instance
settings = Settings()
