"""Service layer for the sync engine."""
