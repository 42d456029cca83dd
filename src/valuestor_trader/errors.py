"""Exception hierarchy shared by the trading pipeline."""

from __future__ import annotations


class TraderError(Exception):
    """Base class for errors raised by the bot."""


class ConfigurationError(TraderError):
    """Required configuration is missing or invalid; the process must not start."""


class StorageError(TraderError):
    """The state store could not be reached or returned corrupt data."""


class GatewayError(TraderError):
    """A chain read, write, or log poll failed."""


class WalletNotConfiguredError(GatewayError):
    """A write was requested from a gateway that has no signing account."""


class SlippageExceededError(GatewayError):
    """The on-chain price moved past the tolerated bound before submission."""


class ReasoningServiceError(TraderError):
    """The reasoning service failed after all retry attempts."""


class InvalidTransitionError(TraderError):
    """A trade execution was moved out of a terminal state."""


__all__ = [
    "ConfigurationError",
    "GatewayError",
    "InvalidTransitionError",
    "ReasoningServiceError",
    "SlippageExceededError",
    "StorageError",
    "TraderError",
    "WalletNotConfiguredError",
]
