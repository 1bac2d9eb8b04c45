from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # API Settings
    PROJECT_NAME: str = "Dealership Ledger API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "On-account receipts, allocations, disbursements and approvals"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "dealership"

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # JWT
    SECRET_KEY: str = "change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Allocation policy
    ALLOW_REOPEN_CLOSED_RECEIPTS: bool = True
    AUTO_APPROVE_ALLOCATION_PAYERS: List[str] = ["SUBDEALER"]
    AUTO_APPROVE_DISBURSEMENT_RECEIPTS: bool = True
    AUTO_APPROVE_CASH_BROKER_TRANSACTIONS: bool = True
    DEVIATION_REQUIRES_EXACT_MATCH: bool = False

    # Optimistic concurrency
    MAX_TRANSACTION_ATTEMPTS: int = 3

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
