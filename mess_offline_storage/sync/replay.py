"""
Replay rules for queued items.

Decides which HTTP method a queued item is sent with, strips the replay
marker from its body, and maps its endpoint to the local business table
holding the row it came from.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from ..config import DEFAULT_GET_ONLY_ENDPOINTS
from ..store import Table
from .types import SyncAction, SyncQueueItem

METHOD_KEY = "_method"
HEADERS_KEY = "_headers"
# Holds a body that is not a JSON object, so the marker has a dict to live in.
BODY_KEY = "_body"

ACTION_METHODS = {
    SyncAction.CREATE: "POST",
    SyncAction.UPDATE: "PUT",
    SyncAction.DELETE: "DELETE",
}

_API_PREFIX = "/api"

# First matching URL segment wins.
_SEGMENT_TABLES: tuple[tuple[str, Table], ...] = (
    ("bazar", Table.BAZAR_ENTRIES),
    ("meal", Table.MEAL_ENTRIES),
    ("activit", Table.ACTIVITIES),
    ("user", Table.USER_DATA),
    ("statistic", Table.STATISTICS),
    ("stats", Table.STATISTICS),
)


@dataclass
class ReplayRequest:
    method: str
    endpoint: str
    body: Any = None
    headers: dict[str, str] | None = None


def normalize_endpoint(endpoint: str) -> str:
    """Path without scheme, host, query string, ``/api`` prefix or trailing slash."""
    path = urlsplit(endpoint).path or "/"
    if not path.startswith("/"):
        path = "/" + path
    if path == _API_PREFIX or path.startswith(_API_PREFIX + "/"):
        path = path[len(_API_PREFIX):] or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return path.lower()


def is_get_only(endpoint: str, get_only: Iterable[str] = DEFAULT_GET_ONLY_ENDPOINTS) -> bool:
    """Whether an endpoint is a read that must never be replayed as a write."""
    path = normalize_endpoint(endpoint)
    if path.endswith("/sync"):
        return True
    return path in {normalize_endpoint(e) for e in get_only}


def split_marker(data: Any) -> tuple[Any, str | None, dict[str, str] | None]:
    """Separate the replay marker from a queued payload."""
    if not isinstance(data, dict) or METHOD_KEY not in data:
        return data, None, None
    if BODY_KEY in data:
        body = data[BODY_KEY]
    else:
        body = {k: v for k, v in data.items() if k not in (METHOD_KEY, HEADERS_KEY)}
    method = str(data[METHOD_KEY]).upper() or None
    headers = data.get(HEADERS_KEY) or None
    return body, method, headers


def build_replay_request(
    item: SyncQueueItem, get_only: Iterable[str] = DEFAULT_GET_ONLY_ENDPOINTS
) -> ReplayRequest:
    """The request a queued item is replayed as.

    A GET-only endpoint is always sent as GET, whatever action or marker
    the item carries.
    """
    body, method, headers = split_marker(item.data)
    if is_get_only(item.endpoint, get_only):
        method = "GET"
    elif method is None:
        method = ACTION_METHODS[item.action]

    if method == "GET":
        body = None
    return ReplayRequest(method=method, endpoint=item.endpoint, body=body, headers=headers)


def table_for_endpoint(endpoint: str) -> Table | None:
    """Local business table for an endpoint, or None (e.g. payments)."""
    for segment in normalize_endpoint(endpoint).strip("/").split("/"):
        for prefix, table in _SEGMENT_TABLES:
            if segment.startswith(prefix):
                return table
    return None


def record_id_of(data: Any) -> str | None:
    """The business row id carried in a queued payload."""
    body, _, _ = split_marker(data)
    if isinstance(body, dict) and body.get("id"):
        return str(body["id"])
    return None
