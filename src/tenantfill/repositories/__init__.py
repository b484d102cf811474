"""
Database helpers shared by SQLAlchemy-backed repositories.
"""

from tenantfill.repositories._connection import execute_with_connection

__all__ = ["execute_with_connection"]
