"""Core domain package for vmidentity.

Core contains the matching, querying, watching and reconciliation logic
without any SQLite or watchdog-specific code, keeping the state machine
portable across contact stores and notification backends.
"""
