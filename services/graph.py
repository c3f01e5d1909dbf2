# services/graph.py
"""Small helpers shared by the graph-backed services."""

import logging
from datetime import date, datetime
from functools import wraps

from neo4j.exceptions import DriverError, Neo4jError

from services.errors import BadRequestError, ServiceError

logger = logging.getLogger(__name__)

GRAPH_ERRORS = (Neo4jError, DriverError)


def to_plain(value):
    """
    Convert values coming back from the driver into JSON-friendly ones.
    neo4j.time temporals and stdlib dates become ISO strings; maps and lists
    are converted recursively.
    """
    if value is None:
        return None
    if hasattr(value, "iso_format"):
        return value.iso_format()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def error_message(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc)


def graph_operation(description: str):
    """
    Wrap driver failures as BadRequestError("Failed to <description>: ...").

    Domain errors raised inside (not-found, conflicts) pass through
    untouched; anything that is neither a domain nor a driver error
    propagates as is.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ServiceError:
                raise
            except GRAPH_ERRORS as exc:
                logger.exception("graph operation failed: %s", description)
                raise BadRequestError(f"Failed to {description}: {error_message(exc)}") from exc
        return wrapper
    return decorator
