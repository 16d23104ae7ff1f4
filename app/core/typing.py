"""
Type helpers for SQLAlchemy/SQLModel compatibility with type checkers.

SQLModel fields are declared with Python types (e.g., `status: str`) but at the
class level they're InstrumentedAttribute descriptors with column methods like
.in_(), .is_(), .asc(). Type checkers see plain Python types and complain when
those methods are called; `col()` bridges that gap.
"""

from typing import TYPE_CHECKING, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        select(Vehicle).where(col(Vehicle.ai_score).is_(None))
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields and as the default clock.
    """
    return datetime.now(timezone.utc)


__all__ = ["col", "utc_now"]
