"""LiquidCache Admin - live observation and administration of a LiquidCache cluster."""

__version__ = "0.1.0"
