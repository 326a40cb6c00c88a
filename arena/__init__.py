"""Trading Arena - AI-advised trading agents on simulated and live venues."""

__version__ = "1.0.0"
