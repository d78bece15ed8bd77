from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from spare_change.database import Base


class WalletAccount(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True)
    address = Column(String(44), unique=True, nullable=False, index=True)
    current_accumulated_usd = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    current_accumulated_native = Column(Numeric(precision=20, scale=9), nullable=False, default=0)
    lifetime_accumulated_usd = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    lifetime_accumulated_native = Column(Numeric(precision=20, scale=9), nullable=False, default=0)
    total_payouts = Column(Integer, nullable=False, default=0)
    last_seen_signature = Column(String(88), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    first_connected_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    preferences = relationship("WalletPreferences", back_populates="wallet", uselist=False)


class WalletPreferences(Base):
    __tablename__ = "wallet_preferences"

    id = Column(Integer, primary_key=True)
    wallet_address = Column(String(44), ForeignKey("wallets.address"), unique=True, nullable=False)
    roundup_enabled = Column(Boolean, nullable=False, default=True)
    percentage_enabled = Column(Boolean, nullable=False, default=False)
    percentage_rate = Column(Numeric(5, 2), nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    wallet = relationship("WalletAccount", back_populates="preferences")
