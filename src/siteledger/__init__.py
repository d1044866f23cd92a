"""siteledger -- spreadsheet-backed store for infrastructure asset records."""

__version__ = "0.1.0"
