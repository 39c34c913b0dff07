from __future__ import annotations

import threading
from typing import Sequence


class EndpointSelector:
    """
    Round-robin chooser over a fixed pool of upstream LCD base URLs.

    The cursor is the only mutable state and is guarded by its own lock, so one
    selector can be shared by several probes running concurrently.
    """

    def __init__(self, endpoints: Sequence[str]) -> None:
        pool = tuple(str(e or "").strip().rstrip("/") for e in endpoints)
        pool = tuple(e for e in pool if e)
        if not pool:
            raise ValueError("EndpointSelector requires at least one endpoint")
        self._endpoints = pool
        self._index = 0
        self._lock = threading.Lock()

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    def next(self) -> str:
        with self._lock:
            endpoint = self._endpoints[self._index]
            self._index = (self._index + 1) % len(self._endpoints)
        return endpoint

    def __len__(self) -> int:
        return len(self._endpoints)

    def __repr__(self) -> str:
        return f"EndpointSelector(endpoints={list(self._endpoints)!r})"
