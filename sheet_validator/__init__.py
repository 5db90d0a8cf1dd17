"""sheet-validator: spreadsheet data-quality checks driven by data dictionaries."""

__version__ = "0.1.0"
