"""Connection, transaction and migration core."""
