from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Applied only to constraints declared without an explicit name.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by every rewards table."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# Register model tables on the metadata for Alembic and create_all
import rewards_api.models  # noqa: E402,F401
