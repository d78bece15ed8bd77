import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from spare_change.errors import UpstreamFetchFailure, WalletNotFound
from spare_change.models import WalletAccount, WalletPreferences, LedgerTransaction, PayoutBatch
from spare_change.services.address import validate_address
from spare_change.services.proposal_engine import ProposalConfig

logger = logging.getLogger(__name__)

BASELINE_LOOKBACK_DAYS = 365


@dataclass
class ConnectResult:
    wallet: WalletAccount
    is_first_time: bool


class WalletService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        source,
        threshold_usd: Decimal = Decimal("1.00"),
    ):
        self.sessionmaker = sessionmaker
        self.source = source
        self.threshold_usd = Decimal(threshold_usd)

    async def connect_wallet(self, address: str) -> ConnectResult:
        """Return the registered wallet, or register it with a baseline pointer.

        The baseline is the newest existing transaction, so spending from
        before the wallet was connected never accrues spare change.
        """
        validate_address(address)
        existing = await self.get_wallet(address)
        if existing:
            return ConnectResult(wallet=existing, is_first_time=False)

        baseline = None
        try:
            latest = await self.source.fetch(address, BASELINE_LOOKBACK_DAYS, 1)
            if latest:
                baseline = latest[0]
                logger.info("Onboarding %s - baseline set to transaction %s", address, baseline.signature)
            else:
                logger.info("Onboarding %s - no transactions found, starting fresh", address)
        except UpstreamFetchFailure as e:
            logger.error("Error fetching latest transaction for onboarding %s: %s", address, e.message)

        async with self.sessionmaker() as db:
            wallet = WalletAccount(
                address=address,
                last_seen_signature=baseline.signature if baseline else None,
                last_seen_at=baseline.timestamp if baseline else None,
                current_accumulated_usd=Decimal("0"),
                current_accumulated_native=Decimal("0"),
                lifetime_accumulated_usd=Decimal("0"),
                lifetime_accumulated_native=Decimal("0"),
                total_payouts=0,
            )
            db.add(wallet)
            try:
                await db.commit()
            except IntegrityError:
                # Concurrent first connect registered the wallet already
                await db.rollback()
                wallet = await self.get_wallet(address)
                if wallet is None:
                    raise
                return ConnectResult(wallet=wallet, is_first_time=False)
            await db.refresh(wallet)
        return ConnectResult(wallet=wallet, is_first_time=True)

    async def get_wallet(self, address: str) -> Optional[WalletAccount]:
        async with self.sessionmaker() as db:
            return await db.scalar(select(WalletAccount).where(WalletAccount.address == address))

    async def require_wallet(self, address: str) -> WalletAccount:
        validate_address(address)
        wallet = await self.get_wallet(address)
        if not wallet:
            raise WalletNotFound(f"Wallet {address} not found")
        return wallet

    async def wallet_status(self, address: str) -> dict:
        wallet = await self.require_wallet(address)
        async with self.sessionmaker() as db:
            recent_transactions = list(await db.scalars(
                select(LedgerTransaction)
                .where(LedgerTransaction.wallet_address == address)
                .order_by(LedgerTransaction.timestamp.desc())
                .limit(10)
            ))
            recent_batches = list(await db.scalars(
                select(PayoutBatch)
                .where(PayoutBatch.wallet_address == address)
                .order_by(PayoutBatch.created_at.desc(), PayoutBatch.id.desc())
                .limit(5)
            ))
            pending_count = await db.scalar(
                select(func.count(LedgerTransaction.id)).where(
                    LedgerTransaction.wallet_address == address,
                    LedgerTransaction.is_processed == False,  # noqa: E712
                )
            )

        current_usd = Decimal(wallet.current_accumulated_usd)
        return {
            "wallet": wallet,
            "current_accumulated_usd": current_usd,
            "current_accumulated_native": Decimal(wallet.current_accumulated_native),
            "lifetime_accumulated_usd": Decimal(wallet.lifetime_accumulated_usd),
            "lifetime_accumulated_native": Decimal(wallet.lifetime_accumulated_native),
            "pending_transaction_count": pending_count or 0,
            "ready_for_payout": current_usd >= self.threshold_usd,
            "next_payout_at": max(Decimal("0"), self.threshold_usd - current_usd),
            "recent_transactions": recent_transactions,
            "recent_batches": recent_batches,
        }

    async def list_transactions(self, address: str, limit: int = 50, offset: int = 0) -> list[LedgerTransaction]:
        await self.require_wallet(address)
        async with self.sessionmaker() as db:
            return list(await db.scalars(
                select(LedgerTransaction)
                .where(LedgerTransaction.wallet_address == address)
                .order_by(LedgerTransaction.timestamp.desc(), LedgerTransaction.id.desc())
                .offset(offset)
                .limit(limit)
            ))

    # ------------------------------------------------------------------
    # Proposal preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, address: str) -> Optional[WalletPreferences]:
        async with self.sessionmaker() as db:
            return await db.scalar(select(WalletPreferences).where(WalletPreferences.wallet_address == address))

    async def update_preferences(
        self,
        address: str,
        roundup_enabled: Optional[bool] = None,
        percentage_enabled: Optional[bool] = None,
        percentage_rate: Optional[Decimal] = None,
    ) -> WalletPreferences:
        await self.require_wallet(address)
        async with self.sessionmaker() as db:
            prefs = await db.scalar(select(WalletPreferences).where(WalletPreferences.wallet_address == address))
            if not prefs:
                prefs = WalletPreferences(
                    wallet_address=address,
                    roundup_enabled=True,
                    percentage_enabled=False,
                    percentage_rate=Decimal("1.00"),
                )
                db.add(prefs)
            if roundup_enabled is not None:
                prefs.roundup_enabled = roundup_enabled
            if percentage_enabled is not None:
                prefs.percentage_enabled = percentage_enabled
            if percentage_rate is not None:
                prefs.percentage_rate = Decimal(percentage_rate)
            await db.commit()
            await db.refresh(prefs)
            return prefs

    async def proposal_config(
        self,
        address: str,
        default_rate: Decimal,
        min_amount: Optional[Decimal],
        max_amount: Optional[Decimal],
        **overrides,
    ) -> ProposalConfig:
        """Proposal settings: explicit overrides, then stored preferences, then defaults."""
        prefs = await self.get_preferences(address)
        values = {
            "roundup_enabled": prefs.roundup_enabled if prefs else True,
            "percentage_enabled": prefs.percentage_enabled if prefs else False,
            "percentage_rate": Decimal(prefs.percentage_rate) if prefs else default_rate,
            "min_proposal_amount": min_amount,
            "max_proposal_amount": max_amount,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ProposalConfig(**values)
