"""Declarative Base shared by every table in the auth schema."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
