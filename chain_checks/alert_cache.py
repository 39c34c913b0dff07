from __future__ import annotations

import asyncio
from datetime import timedelta

import structlog

from chain_checks.probe_common import Observation
from chain_checks.store import KeyValueStore, StoreError
from chain_checks.summary import CycleSummary


logger = structlog.get_logger(__name__)

ALERTS_NAMESPACE = "alerts"
MONITORS_NAMESPACE = "monitors"
LATEST_EXECUTION_KEY = b"latestMonitorExec"

# Roughly one month.
DEFAULT_RETENTION = timedelta(days=30)


class AlertCache:
    """
    Records which observation identities already produced an alert.

    Store failures never propagate: a failed lookup counts as "not seen" so a
    real event is alerted (possibly twice) rather than dropped, and a failed
    write only means the event may alert again next cycle.
    """

    def __init__(self, store: KeyValueStore, *, retention: timedelta = DEFAULT_RETENTION) -> None:
        if retention.total_seconds() <= 0:
            raise ValueError("retention must be positive")
        self.store = store
        self.retention = retention

    async def seen(self, observation: Observation) -> bool:
        try:
            return bool(await asyncio.to_thread(self.store.has, ALERTS_NAMESPACE, observation.identity))
        except StoreError as exc:
            logger.warning(
                "Alert cache lookup failed; treating as unseen",
                probe=observation.probe,
                identity=observation.identity_hex,
                error=str(exc),
            )
        except Exception:
            logger.exception(
                "Alert cache lookup raised; treating as unseen",
                probe=observation.probe,
                identity=observation.identity_hex,
            )
        return False

    async def remember(self, observation: Observation) -> bool:
        try:
            await asyncio.to_thread(
                self.store.set,
                ALERTS_NAMESPACE,
                observation.identity,
                observation.payload,
                self.retention.total_seconds(),
            )
        except StoreError as exc:
            logger.debug(
                "Failed to persist alert", probe=observation.probe, identity=observation.identity_hex, error=str(exc)
            )
            return False
        except Exception:
            logger.exception("Persisting alert raised", probe=observation.probe, identity=observation.identity_hex)
            return False
        return True

    async def save_summary(self, summary: CycleSummary) -> bool:
        try:
            await asyncio.to_thread(self.store.set, MONITORS_NAMESPACE, LATEST_EXECUTION_KEY, summary.to_json())
        except StoreError as exc:
            logger.debug("Failed to persist latest monitor execution", error=str(exc))
            return False
        except Exception:
            logger.exception("Persisting latest monitor execution raised")
            return False
        return True

    async def latest_summary_raw(self) -> bytes:
        """Raises KeyNotFound when no cycle has completed yet."""
        return await asyncio.to_thread(self.store.get, MONITORS_NAMESPACE, LATEST_EXECUTION_KEY)

    async def latest_summary(self) -> CycleSummary:
        return CycleSummary.from_json(await self.latest_summary_raw())
