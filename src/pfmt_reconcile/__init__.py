"""PFMT workbook extraction and project reconciliation."""

__version__ = "0.1.0"
