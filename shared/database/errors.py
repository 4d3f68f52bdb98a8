"""Helpers for interpreting database driver errors"""
from sqlalchemy.exc import IntegrityError

UNIQUE_VIOLATION = "23505"


def _sqlstate(error) -> str:
    # asyncpg exposes `sqlstate`, psycopg `pgcode`
    return getattr(error, "sqlstate", None) or getattr(error, "pgcode", None) or ""


def is_unique_violation(exc: Exception) -> bool:
    """True when `exc` is (or wraps) a PostgreSQL unique violation"""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    if _sqlstate(orig) == UNIQUE_VIOLATION:
        return True
    # SQLAlchemy's asyncpg adapter keeps the driver exception as __cause__
    cause = getattr(orig, "__cause__", None)
    return cause is not None and _sqlstate(cause) == UNIQUE_VIOLATION
