"""Database base."""

from sqlalchemy.orm import declarative_base

from autoflow.utils.timezone import utc_now

Base = declarative_base()


def get_current_timestamp():
    """Get current timestamp in UTC for database defaults."""
    return utc_now()
