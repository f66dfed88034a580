# src/chat_sync/db/__init__.py
"""Database configuration and utilities."""

from .session import SessionFactory, SessionLocal, get_db

__all__ = ["get_db", "SessionFactory", "SessionLocal"]
