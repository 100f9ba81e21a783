from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by all ledger models."""


# Register model metadata for Alembic and create_all
import hustl_api.models  # noqa: E402,F401
