"""FraudGuard portal backend components."""

__version__ = "0.1.0"
