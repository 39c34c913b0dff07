from __future__ import annotations

from typing import Any

from chain_checks.probe_common import BaseProbe, NothingToReport, Observation, ProbeError, make_observation


PROPOSAL_STATUS_NEW = "DepositPeriod"
PROPOSAL_STATUS_VOTING = "VotingPeriod"

NEW_PROPOSALS_PROBE_NAME = "gov/newProposals"
NEW_PROPOSALS_PROBE_MEMO = "New Governance Proposals"
ACTIVE_PROPOSALS_PROBE_NAME = "gov/activeProposals"
ACTIVE_PROPOSALS_PROBE_MEMO = "Active Governance Proposals"


def _proposal_sort_key(proposal: Any) -> tuple[int, str]:
    # Amino wraps proposals as {"type": ..., "value": {...}}; plain LCDs return the inner object.
    inner = proposal
    if isinstance(proposal, dict) and isinstance(proposal.get("value"), dict):
        inner = proposal["value"]
    raw_id = inner.get("proposal_id", inner.get("id")) if isinstance(inner, dict) else None
    try:
        return int(str(raw_id)), ""
    except (TypeError, ValueError):
        return -1, str(raw_id)


def decode_proposals(data: Any) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ProbeError(f"expected a JSON array of proposals, got {type(data).__name__}")
    return sorted(data, key=_proposal_sort_key)


class _ProposalProbe(BaseProbe):
    status: str = ""
    description: str = ""

    async def exec(self) -> Observation:
        self.ctx.log.info("Monitoring for " + self.description, status=self.status)
        data = await self.ctx.fetch_json("/gov/proposals", params={"status": self.status})
        proposals = decode_proposals(data)
        if not proposals:
            raise NothingToReport(f"no proposals with status {self.status}")
        return make_observation(self.name, proposals)


class NewProposalProbe(_ProposalProbe):
    """Governance proposals still in their deposit period."""

    status = PROPOSAL_STATUS_NEW
    description = "new governance proposals"


class ActiveProposalProbe(_ProposalProbe):
    """Governance proposals open for voting."""

    status = PROPOSAL_STATUS_VOTING
    description = "governance proposals in voting stage"
