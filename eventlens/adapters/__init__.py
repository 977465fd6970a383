"""Adapters for integrating EventLens with storage backends."""

from .sqlalchemy_repo import SQLAlchemyEventStore, create_tables

__all__ = ["SQLAlchemyEventStore", "create_tables"]
