"""Execution errors"""


class TransactionFailedError(RuntimeError):
    """Transaction reverted, was dropped, or was not confirmed in time"""

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
