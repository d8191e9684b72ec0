"""Configuration, deviation filtering, VWAP, ticker history and TWAP for oracle price feeds."""

__version__ = "0.1.0"