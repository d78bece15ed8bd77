from decimal import Decimal
import pytest
from spare_change.errors import InvalidAddress, UpstreamFetchFailure, WalletNotFound
from conftest import WALLET, make_tx


@pytest.mark.asyncio
async def test_first_connect_sets_baseline(wallets, source):
    source.push(make_tx("latest", "0.5"), make_tx("older", "0.5"))

    result = await wallets.connect_wallet(WALLET)

    assert result.is_first_time is True
    assert result.wallet.last_seen_signature == "latest"
    assert result.wallet.current_accumulated_usd == 0
    assert source.calls == [(WALLET, 365, 1)]


@pytest.mark.asyncio
async def test_reconnect_returns_existing_wallet(wallets, source):
    first = await wallets.connect_wallet(WALLET)
    again = await wallets.connect_wallet(WALLET)

    assert again.is_first_time is False
    assert again.wallet.id == first.wallet.id
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_connect_survives_baseline_fetch_failure(wallets, source):
    source.error = UpstreamFetchFailure("down")
    result = await wallets.connect_wallet(WALLET)
    assert result.is_first_time is True
    assert result.wallet.last_seen_signature is None


@pytest.mark.asyncio
async def test_connect_rejects_malformed_address(wallets, source):
    with pytest.raises(InvalidAddress):
        await wallets.connect_wallet("0OIl-not-base58")
    assert source.calls == []


@pytest.mark.asyncio
async def test_status_for_unknown_wallet(wallets):
    with pytest.raises(WalletNotFound):
        await wallets.wallet_status(WALLET)


@pytest.mark.asyncio
async def test_status_after_sync(wallets, tracker, source):
    await wallets.connect_wallet(WALLET)
    source.push(make_tx("s1", "0.75"))
    await tracker.sync_transactions(WALLET)

    status = await wallets.wallet_status(WALLET)

    assert status["current_accumulated_usd"] == Decimal("0.25")
    assert status["pending_transaction_count"] == 1
    assert status["ready_for_payout"] is False
    assert status["next_payout_at"] == Decimal("0.75")
    assert [row.signature for row in status["recent_transactions"]] == ["s1"]
    assert status["recent_batches"] == []


@pytest.mark.asyncio
async def test_preferences_feed_proposal_config(wallets):
    await wallets.connect_wallet(WALLET)
    assert await wallets.get_preferences(WALLET) is None

    prefs = await wallets.update_preferences(WALLET, percentage_enabled=True, percentage_rate=Decimal("2.5"))
    assert prefs.roundup_enabled is True
    assert prefs.percentage_enabled is True
    assert prefs.percentage_rate == Decimal("2.5")

    config = await wallets.proposal_config(
        WALLET,
        default_rate=Decimal("1.0"),
        min_amount=Decimal("0.001"),
        max_amount=Decimal("1.0"),
        roundup_enabled=False,
        percentage_rate=None,
    )
    assert config.roundup_enabled is False
    assert config.percentage_enabled is True
    assert config.percentage_rate == Decimal("2.5")
    assert config.max_proposal_amount == Decimal("1.0")


@pytest.mark.asyncio
async def test_update_preferences_requires_wallet(wallets):
    with pytest.raises(WalletNotFound):
        await wallets.update_preferences(WALLET, roundup_enabled=False)
