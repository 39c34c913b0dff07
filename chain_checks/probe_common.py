from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import httpx
import structlog

from chain_checks.endpoints import EndpointSelector


logger = structlog.get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0


class ProbeError(Exception):
    """Upstream unreachable, non-2xx, or a response that does not decode."""


class NothingToReport(ProbeError):
    """The upstream answered fine but nothing matched the probe's filter."""


@dataclass(frozen=True)
class Observation:
    probe: str
    payload: bytes
    identity: bytes

    @property
    def identity_hex(self) -> str:
        return self.identity.hex()


class Probe(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def memo(self) -> str: ...

    async def exec(self) -> Observation: ...


def canonical_json(obj: Any) -> bytes:
    # Byte-identical output for equal inputs: keys sorted, fixed separators.
    return json.dumps(obj, sort_keys=True, indent=2, separators=(",", ": "), ensure_ascii=False).encode("utf-8")


def make_observation(probe: str, obj: Any) -> Observation:
    payload = canonical_json(obj)
    return Observation(probe=probe, payload=payload, identity=hashlib.sha256(payload).digest())


def normalize_address(value: Any) -> str:
    return str(value or "").strip().upper()


@dataclass
class ProbeContext:
    """
    State shared by every concrete probe: identity, upstream selection, the
    watch filter and the HTTP client. Concrete probes own one of these.
    """

    name: str
    memo: str
    selector: EndpointSelector
    client: httpx.AsyncClient
    addresses: frozenset[str] = frozenset()
    operators: frozenset[str] = frozenset()
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    log: Any = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.addresses = frozenset(normalize_address(a) for a in self.addresses if a)
        self.operators = frozenset(str(o).strip() for o in self.operators if o)
        self.log = logger.bind(probe=self.name)

    async def fetch_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.selector.next()}{path}"
        self.log.debug("Requesting upstream", url=url, params=params)

        started = time.perf_counter()
        try:
            resp = await self.client.get(url, params=params, timeout=self.timeout_seconds)
        except httpx.HTTPError as exc:
            raise ProbeError(f"request to {url} failed: {type(exc).__name__}: {exc}") from exc
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)

        if not (200 <= resp.status_code < 300):
            raise ProbeError(f"unexpected HTTP status {resp.status_code} from {url}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProbeError(f"invalid JSON from {url}: {exc}") from exc

        self.log.debug("Upstream responded", url=url, status_code=resp.status_code, elapsed_ms=elapsed_ms)
        return data


class BaseProbe:
    """Exposes the name/memo half of the probe interface from a ProbeContext."""

    def __init__(self, ctx: ProbeContext) -> None:
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.ctx.name

    @property
    def memo(self) -> str:
        return self.ctx.memo

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def sorted_unique(values: Iterable[str]) -> list[str]:
    return sorted(set(values))
