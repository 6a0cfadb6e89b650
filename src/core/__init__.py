"""Core domain package for alertrelay.

Core contains matching, deduplication, the delivery ledger and the background
delivery loops without any gateway or storage-specific code, keeping the
routing logic portable.
"""
