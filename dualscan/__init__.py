"""dualscan: dual-strategy source analysis engine."""

__version__ = "0.1.0"
