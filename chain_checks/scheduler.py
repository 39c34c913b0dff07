from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

import structlog

from chain_checks.alert_cache import AlertCache
from chain_checks.notifiers import Notifier
from chain_checks.probe_common import NothingToReport, Observation, Probe, ProbeError
from chain_checks.summary import CycleSummary


logger = structlog.get_logger(__name__)

STATE_IDLE = "idle"
STATE_POLLING = "polling"


@dataclass
class ProbeOutcome:
    probe: str
    ok: bool
    suppressed: bool = False
    successful_alerts: list[str] = field(default_factory=list)
    failed_alerts: list[str] = field(default_factory=list)


class Scheduler:
    """
    Drives poll cycles: every probe is executed, novel observations are sent to
    every notifier, and a summary of the cycle is persisted.

    Probes run through a semaphore of size `concurrency` (1 means strictly
    sequential). A probe failing never affects the others, and a notifier
    failing never stops the remaining notifiers. An observation is written to
    the alert cache once at least one notifier delivered it.
    """

    def __init__(
        self,
        probes: Sequence[Probe],
        notifiers: Sequence[Notifier],
        cache: AlertCache,
        *,
        interval_seconds: float,
        concurrency: int = 1,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.probes = list(probes)
        self.notifiers = list(notifiers)
        self.cache = cache
        self.interval_seconds = float(interval_seconds)
        self.concurrency = max(1, int(concurrency))
        self.state = STATE_IDLE
        self.cycles = 0

    async def _notify(self, probe: Probe, outcome: ProbeOutcome, payload: bytes) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.alert(payload, probe.memo)
            except Exception as exc:
                logger.warning("Alert failed", probe=probe.name, notifier=notifier.name, error=str(exc))
                outcome.failed_alerts.append(notifier.name)
            else:
                outcome.successful_alerts.append(notifier.name)

    async def _dispatch(self, probe: Probe, observation: Observation, outcome: ProbeOutcome) -> None:
        if await self.cache.seen(observation):
            logger.debug("Observation already alerted", probe=probe.name, identity=observation.identity_hex)
            outcome.suppressed = True
            return

        await self._notify(probe, outcome, observation.payload)

        if outcome.successful_alerts:
            await self.cache.remember(observation)
            logger.info(
                "Alert sent",
                probe=probe.name,
                identity=observation.identity_hex,
                notifiers=outcome.successful_alerts,
            )
        elif self.notifiers:
            logger.warning(
                "No notifier delivered the alert; it will be retried",
                probe=probe.name,
                identity=observation.identity_hex,
            )

    async def run_probe(self, probe: Probe) -> ProbeOutcome:
        try:
            observation = await probe.exec()
        except NothingToReport as exc:
            logger.debug("Nothing to report; skipping alert", probe=probe.name, reason=str(exc))
            return ProbeOutcome(probe=probe.name, ok=False)
        except ProbeError as exc:
            logger.warning("Probe failed; skipping alert", probe=probe.name, error=str(exc))
            return ProbeOutcome(probe=probe.name, ok=False)
        except Exception:
            logger.exception("Probe raised unexpectedly; skipping alert", probe=probe.name)
            return ProbeOutcome(probe=probe.name, ok=False)

        outcome = ProbeOutcome(probe=probe.name, ok=True)
        try:
            await self._dispatch(probe, observation, outcome)
        except Exception:
            # The probe itself succeeded; its alert bookkeeping did not.
            logger.exception("Alert dispatch raised", probe=probe.name, identity=observation.identity_hex)
        return outcome

    async def run_cycle(self) -> CycleSummary:
        self.state = STATE_POLLING
        logger.info("Monitoring for new alerts to trigger", probes=len(self.probes))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _guarded(probe: Probe) -> ProbeOutcome:
            async with semaphore:
                return await self.run_probe(probe)

        try:
            # gather keeps configuration order in the summary.
            outcomes = await asyncio.gather(*(_guarded(p) for p in self.probes))

            summary = CycleSummary()
            for outcome in outcomes:
                (summary.successful_monitors if outcome.ok else summary.failed_monitors).append(outcome.probe)
                summary.successful_alerts.extend(outcome.successful_alerts)
                summary.failed_alerts.extend(outcome.failed_alerts)

            await self.cache.save_summary(summary)
            logger.info(
                "Poll cycle finished",
                successful_monitors=len(summary.successful_monitors),
                failed_monitors=len(summary.failed_monitors),
                suppressed=sum(1 for o in outcomes if o.suppressed),
                alerts_sent=len(summary.successful_alerts),
            )
        finally:
            self.state = STATE_IDLE
            self.cycles += 1
        return summary

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Run a cycle immediately, then every `interval_seconds`. Setting
        `stop_event` prevents new cycles; a cycle in flight is allowed to finish.
        """
        stop = stop_event or asyncio.Event()
        while not stop.is_set():
            started = time.monotonic()
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Poll cycle failed")

            elapsed = time.monotonic() - started
            sleep_for = max(0.0, self.interval_seconds - elapsed)
            logger.info("Cycle complete", elapsed_seconds=round(elapsed, 3), sleep_seconds=round(sleep_for, 3))
            try:
                await asyncio.wait_for(stop.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped", cycles=self.cycles)
