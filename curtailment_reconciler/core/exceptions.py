"""
Exception hierarchy for the reconciliation engine.
"""


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class ConfigurationError(ReconciliationError):
    """Raised when run configuration is invalid."""


class TransientError(ReconciliationError):
    """
    Raised for upstream failures that are worth retrying.

    Timeouts, throttling and dropped connections fall in this category.
    """


class DerivationInputError(ReconciliationError):
    """Raised when a derivation input (e.g. network difficulty) cannot be retrieved."""


class PartitionWriteError(ReconciliationError):
    """Raised when derived rows for a partition cannot be written."""

    def __init__(self, partition: str, message: str):
        self.partition = partition
        self.message = message
        super().__init__(f"[{partition}] {message}")


class ScanError(ReconciliationError):
    """Raised when the scanner cannot enumerate the partitions of a scope."""
