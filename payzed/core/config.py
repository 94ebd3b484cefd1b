from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "PayZed"
    API_V1_STR: str = "/api/v1"
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "payzed"
    DATABASE_URL: Optional[str] = None
    DB_CREATE_ALL: bool = False

    # Insert retries on stale schema cache (delay grows linearly per attempt)
    DB_INSERT_ATTEMPTS: int = 3
    DB_RETRY_DELAY_SECONDS: float = 2.0

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Chain (Arc testnet)
    RPC_URL: str = "https://rpc.testnet.arc.network"
    RPC_TIMEOUT_SECONDS: int = 60
    CHAIN_ID: int = 5042002
    BLOCK_EXPLORER_URL: str = "https://testnet.arcscan.app"
    WALLETCONNECT_PROJECT_ID: Optional[str] = None

    # Contracts. Left unset, the matching actions are disabled with a message.
    PAYZED_CONTRACT_ADDRESS: Optional[str] = None
    INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS: Optional[str] = None

    # Tokens
    USDC_CONTRACT_ADDRESS: str = "0x3600000000000000000000000000000000000000"
    EURC_CONTRACT_ADDRESS: str = "0x89B50855Aa3bE2F677cD6303Cec089B5F319D72a"
    TOKEN_DECIMALS: int = 6

    # Reconciliation / polling
    EVENT_WATCHER_ENABLED: bool = True
    EVENT_WATCH_INTERVAL_SECONDS: float = 4.0
    RECEIPT_TIMEOUT_SECONDS: int = 120
    WORKER_CONCURRENCY: int = 8
    PAYMENT_SUCCESS_DELAY_SECONDS: float = 1.0
    SUBSCRIPTION_POLL_SECONDS: float = 5.0
    INVOICE_POLL_SECONDS: float = 2.0

settings = Settings()
