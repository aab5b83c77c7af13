"""Grid-trading order-lifecycle engine for a fleet of wallets on a TWAP limit-order venue."""

__version__ = "0.1.0"
