"""Dict-backed Redis client double for cache fault scenarios."""

from __future__ import annotations

import fnmatch
from typing import Any, Dict, Tuple
from unittest.mock import MagicMock


def dict_backed_redis() -> Tuple[MagicMock, Dict[str, Any]]:
    """
    MagicMock client storing into a plain dict.

    Individual methods can be broken for a while by assigning a ``side_effect``
    and restored with ``restore(client, "scan_iter")``.
    """
    store: Dict[str, Any] = {}
    client = MagicMock()
    client._handlers = {
        "get": store.get,
        "setex": lambda key, ttl, value: store.__setitem__(key, value),
        "delete": lambda key: 1 if store.pop(key, None) is not None else 0,
        "scan_iter": lambda match: [k for k in list(store) if fnmatch.fnmatch(k, match)],
    }
    for method in client._handlers:
        restore(client, method)
    return client, store


def restore(client: MagicMock, method: str) -> None:
    getattr(client, method).side_effect = client._handlers[method]
