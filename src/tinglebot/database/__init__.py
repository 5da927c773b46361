"""SQLAlchemy schema for Tinglebot."""
