from spare_change.models.wallet import WalletAccount, WalletPreferences
from spare_change.models.ledger import LedgerTransaction
from spare_change.models.batch import PayoutBatch, BatchStatus, BATCH_TRANSITIONS
