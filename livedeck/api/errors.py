"""Translate runtime errors into HTTP responses."""
from fastapi import HTTPException

from livedeck.core.errors import LiveDeckError


def as_http_exception(error: LiveDeckError) -> HTTPException:
    """Map a domain error to an ``HTTPException`` carrying its code."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
