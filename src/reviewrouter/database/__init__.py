"""Persistence layer for ReviewRouter (SQLAlchemy async models and queries)."""
