from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, BigInteger, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from spare_change.database import Base


class LedgerTransaction(Base):
    """One outgoing transfer already converted to spare change.

    ``(wallet_address, signature)`` is unique: recording the same signature
    twice must never produce a second row.
    """

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_address", "signature", name="uq_ledger_wallet_signature"),
        Index("ix_ledger_wallet_processed", "wallet_address", "is_processed"),
    )

    id = Column(Integer, primary_key=True)
    wallet_address = Column(String(44), ForeignKey("wallets.address"), nullable=False, index=True)
    signature = Column(String(88), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    slot = Column(BigInteger, nullable=True)
    token_mint = Column(String(44), nullable=True)
    original_amount_native = Column(Numeric(precision=20, scale=9), nullable=False)
    original_amount_usd = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    spare_change_native = Column(Numeric(precision=20, scale=9), nullable=False)
    spare_change_usd = Column(Numeric(precision=20, scale=8), nullable=False)
    price_used = Column(Numeric(precision=20, scale=8), nullable=False)
    price_source = Column(String(20), nullable=False)
    price_degraded = Column(Boolean, nullable=False, default=False)
    is_processed = Column(Boolean, nullable=False, default=False)
    batch_id = Column(Integer, ForeignKey("payout_batches.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    batch = relationship("PayoutBatch", back_populates="transactions")
