from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class ProposalRequest(BaseModel):
    address: str = Field(min_length=1)
    lookback_days: Optional[int] = Field(default=None, gt=0, le=365)
    roundup_enabled: Optional[bool] = None
    percentage_enabled: Optional[bool] = None
    percentage_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    min_proposal_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_proposal_amount: Optional[Decimal] = Field(default=None, gt=0)
