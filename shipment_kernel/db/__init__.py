"""Database infrastructure: declarative base, engine, append-only guards."""
