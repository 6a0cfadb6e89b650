"""Storage, catalog and gateway adapters for alertrelay."""
