"""
Fuel price crawler Django application.

This app traverses the region / sub-region catalog published by the
price-reporting authority, detects station price changes and persists
only the changes as an append-only history.
"""
