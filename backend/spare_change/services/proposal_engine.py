"""
proposal_engine.py
Turns outgoing transactions into spare-change proposals.

Two independent laws, both in native units:
  round-up:   ceil(amount) - amount
  percentage: amount * rate / 100
A proposal below ``min_proposal_amount`` is dropped; one above
``max_proposal_amount`` is clamped. USD values use the price at block time.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_CEILING, ROUND_DOWN
from typing import Iterable, Optional
from spare_change.services.price_feed import PriceFeed, PriceQuote
from spare_change.services.transaction_source import SourceTransaction

NATIVE_QUANTUM = Decimal("0.000000001")
USD_QUANTUM = Decimal("0.00000001")

ROUNDUP = "roundup"
PERCENTAGE = "percentage"


def round_up_spare_change(amount: Decimal) -> Decimal:
    """Distance from ``amount`` up to the next whole native unit; 0 for whole amounts."""
    amount = Decimal(amount)
    spare = amount.to_integral_value(rounding=ROUND_CEILING) - amount
    return spare.quantize(NATIVE_QUANTUM, rounding=ROUND_DOWN)


def percentage_spare_change(amount: Decimal, rate: Decimal) -> Decimal:
    spare = Decimal(amount) * Decimal(rate) / Decimal(100)
    return spare.quantize(NATIVE_QUANTUM, rounding=ROUND_DOWN)


def to_usd(amount: Decimal, price: Decimal) -> Decimal:
    # Truncate so a round-up never reaches the value of a whole unit
    return (Decimal(amount) * Decimal(price)).quantize(USD_QUANTUM, rounding=ROUND_DOWN)


def _as_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class ProposalConfig:
    roundup_enabled: bool = True
    percentage_enabled: bool = False
    percentage_rate: Decimal = Decimal("1.0")
    min_proposal_amount: Optional[Decimal] = None
    max_proposal_amount: Optional[Decimal] = None

    def __post_init__(self):
        self.percentage_rate = _as_decimal(self.percentage_rate)
        self.min_proposal_amount = _as_decimal(self.min_proposal_amount)
        self.max_proposal_amount = _as_decimal(self.max_proposal_amount)
        if self.percentage_rate < 0:
            raise ValueError("percentage_rate must be >= 0")
        if self.min_proposal_amount is not None and self.min_proposal_amount < 0:
            raise ValueError("min_proposal_amount must be >= 0")
        if self.max_proposal_amount is not None and self.max_proposal_amount <= 0:
            raise ValueError("max_proposal_amount must be > 0")
        if (
            self.min_proposal_amount is not None
            and self.max_proposal_amount is not None
            and self.max_proposal_amount < self.min_proposal_amount
        ):
            raise ValueError("max_proposal_amount must be >= min_proposal_amount")

    def apply_limits(self, spare: Decimal) -> Optional[Decimal]:
        """Drop below the minimum, clamp above the maximum."""
        if self.min_proposal_amount and spare < self.min_proposal_amount:
            return None
        if self.max_proposal_amount is not None:
            return min(spare, self.max_proposal_amount)
        return spare

    def to_dict(self) -> dict:
        return {
            "roundup_enabled": self.roundup_enabled,
            "percentage_enabled": self.percentage_enabled,
            "percentage_rate": str(self.percentage_rate),
            "min_proposal_amount": str(self.min_proposal_amount) if self.min_proposal_amount is not None else None,
            "max_proposal_amount": str(self.max_proposal_amount) if self.max_proposal_amount is not None else None,
        }


@dataclass
class Proposal:
    wallet_address: Optional[str]
    transaction_signature: str
    transaction_timestamp: datetime
    transaction_slot: int
    proposal_type: str
    original_amount_native: Decimal
    original_amount_usd: Decimal
    spare_change_native: Decimal
    spare_change_usd: Decimal
    price_usd: Decimal
    price_source: str
    price_degraded: bool = False
    price_approximated: bool = False
    percentage_rate: Optional[Decimal] = None
    token_mint: Optional[str] = None
    token_symbol: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "wallet_address": self.wallet_address,
            "transaction_signature": self.transaction_signature,
            "transaction_timestamp": self.transaction_timestamp.isoformat(),
            "transaction_slot": self.transaction_slot,
            "proposal_type": self.proposal_type,
            "percentage_rate": str(self.percentage_rate) if self.percentage_rate is not None else None,
            "original_amount_native": str(self.original_amount_native),
            "original_amount_usd": str(self.original_amount_usd),
            "spare_change_native": str(self.spare_change_native),
            "spare_change_usd": str(self.spare_change_usd),
            "price_usd": str(self.price_usd),
            "price_source": self.price_source,
            "price_degraded": self.price_degraded,
            "price_approximated": self.price_approximated,
            "token_mint": self.token_mint,
            "token_symbol": self.token_symbol,
        }


@dataclass
class ProposalResult:
    proposals: list[Proposal] = field(default_factory=list)
    total_spare_change_native: Decimal = Decimal("0")
    total_spare_change_usd: Decimal = Decimal("0")

    def add(self, proposal: Proposal) -> None:
        self.proposals.append(proposal)
        self.total_spare_change_native += proposal.spare_change_native
        self.total_spare_change_usd += proposal.spare_change_usd

    def summary(self) -> dict:
        return {
            "total_proposals": len(self.proposals),
            "total_spare_change_native": str(self.total_spare_change_native),
            "total_spare_change_usd": str(self.total_spare_change_usd),
            "roundup_proposals": sum(1 for p in self.proposals if p.proposal_type == ROUNDUP),
            "percentage_proposals": sum(1 for p in self.proposals if p.proposal_type == PERCENTAGE),
            "degraded_price_proposals": sum(1 for p in self.proposals if p.price_degraded),
        }


class ProposalEngine:
    def __init__(self, price_feed: PriceFeed):
        self.price_feed = price_feed

    async def generate(
        self,
        transactions: Iterable[SourceTransaction],
        config: ProposalConfig,
        wallet_address: Optional[str] = None,
    ) -> ProposalResult:
        """Build proposals in transaction order, round-up before percentage."""
        result = ProposalResult()
        use_percentage = config.percentage_enabled and config.percentage_rate > 0

        for tx in transactions:
            if not tx.is_outgoing_payment:
                continue

            candidates = []
            if config.roundup_enabled:
                spare = config.apply_limits(round_up_spare_change(tx.amount))
                if spare is not None:
                    candidates.append((ROUNDUP, spare, None))
            if use_percentage:
                spare = config.apply_limits(percentage_spare_change(tx.amount, config.percentage_rate))
                if spare is not None:
                    candidates.append((PERCENTAGE, spare, config.percentage_rate))
            if not candidates:
                continue

            quote = await self.price_feed.price_at(tx.token_mint, tx.block_time)
            for proposal_type, spare, rate in candidates:
                result.add(self._build(tx, quote, proposal_type, spare, rate, wallet_address))

        return result

    def summarize(self, transactions: Iterable[SourceTransaction], config: ProposalConfig) -> dict:
        """Native-unit totals per law, without any price lookups."""
        roundup_total = Decimal("0")
        percentage_total = Decimal("0")
        count = 0
        use_percentage = config.percentage_enabled and config.percentage_rate > 0

        for tx in transactions:
            if not tx.is_outgoing_payment:
                continue
            count += 1
            if config.roundup_enabled:
                spare = config.apply_limits(round_up_spare_change(tx.amount))
                if spare is not None:
                    roundup_total += spare
            if use_percentage:
                spare = config.apply_limits(percentage_spare_change(tx.amount, config.percentage_rate))
                if spare is not None:
                    percentage_total += spare

        return {
            "roundup_total": roundup_total,
            "percentage_total": percentage_total,
            "total": roundup_total + percentage_total,
            "transaction_count": count,
        }

    @staticmethod
    def _build(
        tx: SourceTransaction,
        quote: PriceQuote,
        proposal_type: str,
        spare: Decimal,
        rate: Optional[Decimal],
        wallet_address: Optional[str],
    ) -> Proposal:
        return Proposal(
            wallet_address=wallet_address,
            transaction_signature=tx.signature,
            transaction_timestamp=tx.timestamp,
            transaction_slot=tx.slot,
            proposal_type=proposal_type,
            percentage_rate=rate,
            original_amount_native=tx.amount,
            original_amount_usd=to_usd(tx.amount, quote.price_usd),
            spare_change_native=spare,
            spare_change_usd=to_usd(spare, quote.price_usd),
            price_usd=quote.price_usd,
            price_source=quote.source,
            price_degraded=quote.degraded,
            price_approximated=quote.approximated,
            token_mint=tx.token_mint,
            token_symbol=tx.token_symbol or (None if tx.token_mint else "SOL"),
        )
