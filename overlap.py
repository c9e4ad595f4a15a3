"""Half-open interval overlap, shared by the allocator and the availability count.

Two intervals ``[s1, e1)`` and ``[s2, e2)`` overlap iff ``s1 < e2`` and
``s2 < e1``. Intervals that only touch at an endpoint do not overlap, so a
10:00-11:00 booking and an 11:00-12:00 booking can share a court.
"""

from datetime import datetime

from sqlalchemy import and_


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def overlap_clause(start_column, end_column, start: datetime, end: datetime):
    """The same predicate as :func:`overlaps`, as a SQL filter on a stored interval."""
    return and_(start_column < end, end_column > start)
