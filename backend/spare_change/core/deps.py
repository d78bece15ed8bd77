from fastapi import Request
from spare_change.config import Settings
from spare_change.core.container import Container
from spare_change.services.payout_batcher import PayoutBatcher
from spare_change.services.price_feed import PriceFeed
from spare_change.services.proposal_engine import ProposalEngine
from spare_change.services.transaction_tracker import TransactionTracker
from spare_change.services.wallet_service import WalletService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_settings(request: Request) -> Settings:
    return get_container(request).settings


def get_tracker(request: Request) -> TransactionTracker:
    return get_container(request).tracker


def get_wallet_service(request: Request) -> WalletService:
    return get_container(request).wallets


def get_batcher(request: Request) -> PayoutBatcher:
    return get_container(request).batcher


def get_proposal_engine(request: Request) -> ProposalEngine:
    return get_container(request).proposal_engine


def get_price_feed(request: Request) -> PriceFeed:
    return get_container(request).price_feed


def get_source(request: Request):
    return get_container(request).source
