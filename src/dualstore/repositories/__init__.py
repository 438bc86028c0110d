"""Per-entity relational repositories."""
