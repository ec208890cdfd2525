"""Schema training service: background job queue and relational metadata training."""

__version__ = "0.1.0"
