"""finbot — WhatsApp session bridge for a finance assistant."""

__version__ = "0.3.0"
