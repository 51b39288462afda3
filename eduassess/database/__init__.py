"""
Database package.

Declarative base, engine and session management, and the Alembic
migrations of the assessment tables.
"""
