# imprints/db/base.py
# Shared declarative base for SQLAlchemy.
# This module must stay minimal and must not import the models,
# to avoid circular imports. Models import Base from here.

import uuid

from sqlalchemy.orm import declarative_base

# Single definition point of Base for all models
Base = declarative_base()


def new_id() -> str:
    """UUID primary keys stored as text."""
    return str(uuid.uuid4())
