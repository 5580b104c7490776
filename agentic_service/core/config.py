"""
Application configuration settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List, Dict, Any


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Agentic Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Masumi Payment Service Configuration
    PAYMENT_SERVICE_URL: Optional[str] = None
    PAYMENT_API_KEY: Optional[str] = None
    SELLER_VKEY: Optional[str] = None
    NETWORK: str = "Preprod"  # "Preprod" or "Mainnet"
    AGENT_IDENTIFIER: Optional[str] = None  # Obtained after agent registration
    PAYMENT_AMOUNT: int = 10000000  # 10 ADA in lovelace (1 unit = 10^-6 ADA)
    PAYMENT_UNIT: str = "lovelace"

    # Job lifecycle
    REQUIRE_PAYMENT: bool = True  # False runs jobs without waiting for on-chain payment
    PAY_BY_WINDOW_SECONDS: int = 600
    SUBMIT_RESULT_WINDOW_SECONDS: int = 3600
    UNLOCK_DELAY_SECONDS: int = 7200
    DISPUTE_WINDOW_SECONDS: int = 10800
    SWEEP_INTERVAL_SECONDS: float = 5.0
    CAS_MAX_ATTEMPTS: int = 5

    # Input schema served on /input_schema and enforced on /start_job
    INPUT_SCHEMA: List[Dict[str, Any]] = [
        {"key": "text", "value_type": "string"},
    ]
    ALLOW_EXTRA_INPUT_KEYS: bool = False

    # Execution backend: "local" (in-process worker pool) or "remote" (HTTP task queue)
    EXECUTION_BACKEND: str = "local"
    EXECUTION_SERVICE_URL: Optional[str] = None
    EXECUTION_API_KEY: Optional[str] = None
    EXECUTION_CONCURRENCY: int = 4

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # Database (in-memory job store when unset)
    DATABASE_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    def masumi_configured(self) -> bool:
        """Check if the Masumi payment service is fully configured"""
        return bool(self.PAYMENT_SERVICE_URL and self.PAYMENT_API_KEY and self.AGENT_IDENTIFIER)


def get_settings() -> Settings:
    """Load settings once at startup; callers pass the instance along explicitly."""
    return Settings()
