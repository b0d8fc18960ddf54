"""
Health Tracker Sync - Local health logs kept in two-way sync with a health store.

Keeps persisted weight, hydration and sleep entries for each tracker,
reconciles them with an external health-data store without creating
duplicates, and derives goal streaks and statistics from the merged log.
"""

__version__ = "0.1.0"
