"""Fleet health monitor: polls fleet status, evaluates threshold rules and notifies agent sessions."""

__version__ = "0.1.0"
