from typing import Optional
from pydantic import BaseModel
from spare_change.models.batch import BatchStatus


class BatchStatusRequest(BaseModel):
    status: BatchStatus
    execution_signature: Optional[str] = None
    error: Optional[str] = None
