from __future__ import annotations

from typing import Callable

import httpx

from chain_checks.config import (
    MONITOR_ACTIVE_PROPOSALS,
    MONITOR_DOUBLE_SIGNING,
    MONITOR_JAILED_VALIDATORS,
    MONITOR_MISSING_SIGNATURES,
    MONITOR_NEW_PROPOSALS,
    ChainChecksConfig,
)
from chain_checks.endpoints import EndpointSelector
from chain_checks.probe_common import BaseProbe, Probe, ProbeContext
from chain_checks.probe_gov import (
    ACTIVE_PROPOSALS_PROBE_MEMO,
    ACTIVE_PROPOSALS_PROBE_NAME,
    NEW_PROPOSALS_PROBE_MEMO,
    NEW_PROPOSALS_PROBE_NAME,
    ActiveProposalProbe,
    NewProposalProbe,
)
from chain_checks.probe_slashing import (
    DOUBLE_SIGN_PROBE_MEMO,
    DOUBLE_SIGN_PROBE_NAME,
    MISSING_SIG_PROBE_MEMO,
    MISSING_SIG_PROBE_NAME,
    DoubleSignProbe,
    MissingSignatureProbe,
)
from chain_checks.probe_staking import JAILED_PROBE_MEMO, JAILED_PROBE_NAME, JailedValidatorProbe


# monitor config value -> (probe class, name, memo)
PROBE_KINDS: dict[str, tuple[Callable[[ProbeContext], BaseProbe], str, str]] = {
    MONITOR_NEW_PROPOSALS: (NewProposalProbe, NEW_PROPOSALS_PROBE_NAME, NEW_PROPOSALS_PROBE_MEMO),
    MONITOR_ACTIVE_PROPOSALS: (ActiveProposalProbe, ACTIVE_PROPOSALS_PROBE_NAME, ACTIVE_PROPOSALS_PROBE_MEMO),
    MONITOR_JAILED_VALIDATORS: (JailedValidatorProbe, JAILED_PROBE_NAME, JAILED_PROBE_MEMO),
    MONITOR_DOUBLE_SIGNING: (DoubleSignProbe, DOUBLE_SIGN_PROBE_NAME, DOUBLE_SIGN_PROBE_MEMO),
    MONITOR_MISSING_SIGNATURES: (MissingSignatureProbe, MISSING_SIG_PROBE_NAME, MISSING_SIG_PROBE_MEMO),
}


def build_probes(cfg: ChainChecksConfig, client: httpx.AsyncClient) -> list[Probe]:
    """Instantiate the enabled probes once, in canonical order."""
    shared = EndpointSelector(cfg.network.clients) if cfg.network.shared_client_pool else None
    addresses = frozenset(v.address for v in cfg.filters.validators)
    operators = frozenset(v.operator for v in cfg.filters.validators)

    probes: list[Probe] = []
    for monitor in cfg.enabled_monitors():
        factory, name, memo = PROBE_KINDS[monitor]
        ctx = ProbeContext(
            name=name,
            memo=memo,
            selector=shared or EndpointSelector(cfg.network.clients),
            client=client,
            addresses=addresses,
            operators=operators,
            timeout_seconds=cfg.network.request_timeout_seconds,
        )
        probes.append(factory(ctx))
    return probes
