from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class WalletAddressRequest(BaseModel):
    wallet_address: str = Field(min_length=1)


class PreferencesUpdateRequest(BaseModel):
    wallet_address: str = Field(min_length=1)
    roundup_enabled: Optional[bool] = None
    percentage_enabled: Optional[bool] = None
    percentage_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)


class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    address: str
    current_accumulated_usd: Decimal
    current_accumulated_native: Decimal
    lifetime_accumulated_usd: Decimal
    lifetime_accumulated_native: Decimal
    total_payouts: int
    last_seen_signature: Optional[str] = None
    last_seen_at: Optional[datetime] = None
    first_connected_at: Optional[datetime] = None


class PreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    roundup_enabled: bool
    percentage_enabled: bool
    percentage_rate: Decimal


class LedgerTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: str
    signature: str
    timestamp: datetime
    slot: Optional[int] = None
    token_mint: Optional[str] = None
    original_amount_native: Decimal
    original_amount_usd: Decimal
    spare_change_native: Decimal
    spare_change_usd: Decimal
    price_used: Decimal
    price_source: str
    price_degraded: bool
    is_processed: bool
    batch_id: Optional[int] = None


class PayoutBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: str
    total_spare_change_usd: Decimal
    total_spare_change_native: Decimal
    transaction_count: int
    status: str
    execution_signature: Optional[str] = None
    execution_error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
