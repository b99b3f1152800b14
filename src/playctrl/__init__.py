"""PlayCTRL - media player state reconciliation for a desktop control surface."""

__version__ = "0.1.0"
