"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import Numeric, Uuid

# UUID type: native on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money columns: 15 digits, 2 decimals
MoneyType = Numeric(15, 2)
