"""Internal machinery: HTTP, retry, pagination, fan-out, locking."""

from .fanout import bounded_gather
from .http import (
    Auth,
    BearerAuth,
    HttpClient,
    HttpError,
    OAuth2Auth,
    Response,
)
from .locks import RWLock
from .pagination import Page, collect_pages, walk_pages
from .retry import call_with_retry, transient

__all__ = [
    "Auth",
    "BearerAuth",
    "HttpClient",
    "HttpError",
    "OAuth2Auth",
    "Page",
    "RWLock",
    "Response",
    "bounded_gather",
    "call_with_retry",
    "collect_pages",
    "transient",
    "walk_pages",
]
