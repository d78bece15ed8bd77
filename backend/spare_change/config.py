from decimal import Decimal
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

NETWORKS = {
    "mainnet": {
        "rpc_url": "https://api.mainnet-beta.solana.com",
        "usdc_mint": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "display_name": "Solana Mainnet",
    },
    "devnet": {
        "rpc_url": "https://api.devnet.solana.com",
        "usdc_mint": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
        "display_name": "Solana Devnet",
    },
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite+aiosqlite:///./spare_change.db"
    REDIS_URL: str = ""

    # Solana network selection; SOLANA_RPC_URL overrides the network default
    SOLANA_NETWORK: Literal["mainnet", "devnet"] = "devnet"
    SOLANA_RPC_URL: str = ""
    JUPITER_API_URL: str = "https://api.jup.ag/price/v2"

    # Price feed
    PRICE_CACHE_TTL_SECONDS: int = 60
    PRICE_RECENCY_SECONDS: int = 300

    # Sync window and payout threshold
    LOOKBACK_DAYS: int = 30
    SYNC_FETCH_LIMIT: int = 100
    PAYOUT_THRESHOLD_USD: Decimal = Decimal("1.00")
    SYNC_INTERVAL_MINUTES: int = 0

    # Proposal preview defaults (native units)
    DEFAULT_PERCENTAGE_RATE: Decimal = Decimal("1.0")
    MIN_PROPOSAL_AMOUNT: Decimal = Decimal("0.001")
    MAX_PROPOSAL_AMOUNT: Decimal = Decimal("1.0")

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0
    RPC_REQUEST_DELAY_SECONDS: float = 0.3
    FETCH_MAX_RETRIES: int = 3
    FETCH_BACKOFF_SECONDS: float = 0.5

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = ""

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def rpc_url(self) -> str:
        return self.SOLANA_RPC_URL or NETWORKS[self.SOLANA_NETWORK]["rpc_url"]

    @property
    def usdc_mint(self) -> str:
        return NETWORKS[self.SOLANA_NETWORK]["usdc_mint"]

    @property
    def network_display_name(self) -> str:
        return NETWORKS[self.SOLANA_NETWORK]["display_name"]

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        return origins or ["http://localhost:3000"]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
