"""
Custom exceptions for the keeper engine.
"""


class KeeperBotError(Exception):
    """Base exception for all keeper errors."""


class ConfigError(KeeperBotError):
    """Raised for configuration-related errors. Always fatal at startup."""


class ExecutionError(KeeperBotError):
    """Raised for errors during job execution."""


class TransactionBuildError(ExecutionError):
    """Raised when building or signing a keeper transaction fails."""


class FeeEstimateUnavailable(ExecutionError):
    """Raised by a fee estimator that has nothing usable to offer."""
