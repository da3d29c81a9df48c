"""Declarative base shared by all fuel queue models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for fuel queue tables."""
