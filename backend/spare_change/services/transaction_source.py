"""
transaction_source.py
Solana JSON-RPC adapter returning a wallet's recent transactions newest-first.

Signature listing or detail fetches that keep failing after retries abort the
whole fetch with ``UpstreamFetchFailure``. A transaction whose payload cannot
be interpreted is logged and skipped.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
import httpx
from spare_change.errors import UpstreamFetchFailure

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(10) ** 9

KNOWN_TOKENS = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    "So11111111111111111111111111111111111111112": "SOL",
}


@dataclass
class SourceTransaction:
    signature: str
    slot: int
    block_time: int
    success: bool
    direction: str  # "sent" | "received" | "unknown"
    amount: Optional[Decimal] = None
    token_mint: Optional[str] = None
    token_symbol: Optional[str] = None
    fee: int = 0

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.block_time, tz=timezone.utc)

    @property
    def is_outgoing_payment(self) -> bool:
        """Sent, successful and carrying a positive amount."""
        return self.direction == "sent" and self.success and bool(self.amount) and self.amount > 0

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "block_time": self.block_time,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "type": self.direction,
            "amount": str(self.amount) if self.amount is not None else None,
            "token_mint": self.token_mint,
            "token_symbol": self.token_symbol,
            "fee": self.fee,
        }


class SolanaTransactionSource:
    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient,
        request_delay: float = 0.3,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.rpc_url = rpc_url
        self.client = client
        self.request_delay = request_delay
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._id = 1

    async def fetch(self, address: str, lookback_days: int = 30, limit: int = 1000) -> list[SourceTransaction]:
        cutoff = int((datetime.now(timezone.utc) - timedelta(days=lookback_days)).timestamp())

        signatures = await self._rpc("getSignaturesForAddress", [address, {"limit": limit}]) or []
        signatures = [s for s in signatures if s.get("blockTime") and s["blockTime"] >= cutoff]

        transactions: list[SourceTransaction] = []
        for i, sig_info in enumerate(signatures):
            # Sequential fetches with a delay to stay under public RPC rate limits
            if i and self.request_delay:
                await asyncio.sleep(self.request_delay)
            raw = await self._rpc(
                "getTransaction",
                [sig_info["signature"], {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}],
            )
            try:
                tx = parse_transaction(address, sig_info, raw)
            except (KeyError, IndexError, TypeError, ValueError, InvalidOperation) as e:
                logger.warning("Failed to parse transaction %s: %s", sig_info.get("signature"), e)
                continue
            if tx is not None:
                transactions.append(tx)
        return transactions

    async def _rpc(self, method: str, params: list):
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        self._id += 1

        backoff = self.backoff_seconds
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await self.client.post(self.rpc_url, json=payload)
                if resp.status_code != 200:
                    raise UpstreamFetchFailure(f"RPC {method} failed: HTTP {resp.status_code}")
                try:
                    data = resp.json()
                except ValueError as e:
                    raise UpstreamFetchFailure(f"RPC {method} returned a non-JSON body: {e}") from e
                if not isinstance(data, dict):
                    raise UpstreamFetchFailure(f"RPC {method} returned an unexpected payload")
                if "error" in data:
                    raise UpstreamFetchFailure(f"RPC {method} error: {data['error']}")
                return data.get("result")
            except (httpx.HTTPError, UpstreamFetchFailure) as e:
                if attempt >= self.max_retries:
                    raise UpstreamFetchFailure(f"Failed to fetch transactions: {e}") from e
                logger.debug("RPC %s failed (attempt %d): %s", method, attempt, e)
                await asyncio.sleep(backoff)
                backoff *= 2
        raise UpstreamFetchFailure(f"Failed to fetch transactions: {method}")


def parse_transaction(address: str, sig_info: dict, raw: Optional[dict]) -> Optional[SourceTransaction]:
    """Reduce a ``jsonParsed`` transaction to the wallet's view of it."""
    if not raw or not raw.get("blockTime"):
        return None

    meta = raw.get("meta") or {}
    fee = int(meta.get("fee") or 0)
    tx = SourceTransaction(
        signature=sig_info["signature"],
        slot=int(sig_info.get("slot") or raw.get("slot") or 0),
        block_time=int(raw["blockTime"]),
        success=sig_info.get("err") is None and meta.get("err") is None,
        direction="unknown",
        fee=fee,
    )

    keys = [k["pubkey"] if isinstance(k, dict) else k for k in raw["transaction"]["message"]["accountKeys"]]
    if address not in keys or not meta:
        return tx

    idx = keys.index(address)
    change = int(meta["postBalances"][idx]) - int(meta["preBalances"][idx])
    # Fee is excluded so a bare fee payment is not a "sent" transfer
    if change < -fee:
        tx.direction = "sent"
        tx.amount = Decimal(abs(change + fee)) / LAMPORTS_PER_SOL
    elif change > 0:
        tx.direction = "received"
        tx.amount = Decimal(change) / LAMPORTS_PER_SOL

    _apply_token_change(address, meta, tx)
    return tx


def _apply_token_change(address: str, meta: dict, tx: SourceTransaction) -> None:
    pre_balances = meta.get("preTokenBalances")
    post_balances = meta.get("postTokenBalances")
    if not pre_balances or not post_balances:
        return

    for post in post_balances:
        owner = post.get("owner")
        if owner is not None and owner != address:
            continue
        pre = next((p for p in pre_balances if p.get("accountIndex") == post.get("accountIndex")), None)
        if pre is None or not post.get("mint"):
            continue
        pre_amount = Decimal(pre["uiTokenAmount"].get("uiAmountString") or "0")
        post_amount = Decimal(post["uiTokenAmount"].get("uiAmountString") or "0")
        delta = post_amount - pre_amount
        if delta == 0:
            continue

        tx.token_mint = post["mint"]
        tx.token_symbol = KNOWN_TOKENS.get(post["mint"], "UNKNOWN")
        if tx.direction == "unknown":
            tx.direction = "sent" if delta < 0 else "received"
        tx.amount = abs(delta)
