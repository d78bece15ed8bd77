"""Domain errors raised by the accrual and batching services.

Every error carries a stable ``kind`` so the HTTP layer can return a
structured failure instead of a raw exception message.
"""


class SpareChangeError(Exception):
    kind = "SpareChangeError"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidAddress(SpareChangeError):
    kind = "InvalidAddress"
    status_code = 400


class WalletNotFound(SpareChangeError):
    kind = "WalletNotFound"
    status_code = 404


class UpstreamFetchFailure(SpareChangeError):
    kind = "UpstreamFetchFailure"
    status_code = 502


class PriceUnavailable(SpareChangeError):
    kind = "PriceUnavailable"
    status_code = 502


class PersistenceFailure(SpareChangeError):
    kind = "PersistenceFailure"
    status_code = 500


class NoUnprocessedTransactions(SpareChangeError):
    kind = "NoUnprocessedTransactions"
    status_code = 409


class BatchNotFound(SpareChangeError):
    kind = "BatchNotFound"
    status_code = 404


class InvalidBatchTransition(SpareChangeError):
    kind = "InvalidBatchTransition"
    status_code = 409
