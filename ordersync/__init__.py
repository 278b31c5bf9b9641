"""Multi-channel order ingestion and synchronization engine."""

__version__ = "1.0.0"
