"""BrAPI Importer: spreadsheet import reconciliation against a BrAPI store."""

__version__ = "0.3.0"
