"""
Base model with common fields and utilities.
"""

import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    # Use generic Uuid type for cross-database compatibility
    type_annotation_map = {
        uuid.UUID: Uuid(),
    }

    # Load server-side defaults (created_at, started_at) right after INSERT
    __mapper_args__ = {"eager_defaults": True}


def generate_uuid() -> uuid.UUID:
    """Generate a new UUID."""
    return uuid.uuid4()
