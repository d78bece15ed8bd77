from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from spare_change.database import Base


class BatchStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


# Allowed edges of the batch lifecycle; terminal states have none.
BATCH_TRANSITIONS = {
    BatchStatus.pending: {BatchStatus.processing},
    BatchStatus.processing: {BatchStatus.completed, BatchStatus.failed},
    BatchStatus.completed: set(),
    BatchStatus.failed: set(),
}


class PayoutBatch(Base):
    __tablename__ = "payout_batches"

    id = Column(Integer, primary_key=True)
    wallet_address = Column(String(44), ForeignKey("wallets.address"), nullable=False, index=True)
    total_spare_change_usd = Column(Numeric(precision=20, scale=8), nullable=False)
    total_spare_change_native = Column(Numeric(precision=20, scale=9), nullable=False)
    transaction_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=BatchStatus.pending.value)
    execution_signature = Column(String(88), nullable=True)
    execution_error = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    transactions = relationship("LedgerTransaction", back_populates="batch")
