"""Declarative base for task store models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
