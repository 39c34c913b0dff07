from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Any

from chain_checks.probe_common import (
    BaseProbe,
    NothingToReport,
    Observation,
    ProbeError,
    make_observation,
    normalize_address,
    sorted_unique,
)


MISSING_SIG_PROBE_NAME = "slashing/missingSig"
MISSING_SIG_PROBE_MEMO = "Missing Signatures From Validators"
DOUBLE_SIGN_PROBE_NAME = "slashing/doubleSign"
DOUBLE_SIGN_PROBE_MEMO = "Discovered Double Signing Validators"


@dataclass(frozen=True)
class LatestBlock:
    height: int
    precommits: list[dict[str, Any]]
    evidence: list[Any]

    def signer_addresses(self) -> set[str]:
        return {normalize_address(v.get("validator_address")) for v in self.precommits if v.get("validator_address")}


def decode_latest_block(data: Any) -> LatestBlock:
    """
    Decode the parts of a Tendermint ResultBlock we care about. Precommits may
    contain nulls (absent votes); evidence may be null when there is none.
    """
    if isinstance(data, dict) and isinstance(data.get("result"), dict):
        data = data["result"]
    block = data.get("block") if isinstance(data, dict) else None
    if not isinstance(block, dict):
        raise ProbeError("block response is missing 'block'")

    header = block.get("header")
    if not isinstance(header, dict) or "height" not in header:
        raise ProbeError("block response is missing 'block.header.height'")
    try:
        height = int(str(header["height"]))
    except (TypeError, ValueError) as exc:
        raise ProbeError(f"invalid block height {header.get('height')!r}") from exc

    last_commit = block.get("last_commit") or {}
    if not isinstance(last_commit, dict):
        raise ProbeError("block response has a malformed 'last_commit'")
    precommits_raw = last_commit.get("precommits", last_commit.get("signatures")) or []
    if not isinstance(precommits_raw, list):
        raise ProbeError("block response has a malformed 'last_commit.precommits'")
    precommits = [v for v in precommits_raw if isinstance(v, dict)]

    evidence_wrap = block.get("evidence") or {}
    if not isinstance(evidence_wrap, dict):
        raise ProbeError("block response has a malformed 'evidence'")
    evidence = evidence_wrap.get("evidence") or []
    if not isinstance(evidence, list):
        raise ProbeError("block response has a malformed 'evidence.evidence'")

    return LatestBlock(height=height, precommits=precommits, evidence=evidence)


def pubkey_address(pubkey_b64: str) -> str:
    """Tendermint address of an ed25519 key: first 20 bytes of SHA-256, upper hex."""
    try:
        raw = base64.b64decode(pubkey_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProbeError(f"invalid evidence public key {pubkey_b64!r}") from exc
    return hashlib.sha256(raw).digest()[:20].hex().upper()


def duplicate_vote_signer(evidence: Any) -> str | None:
    if not isinstance(evidence, dict):
        return None
    kind = str(evidence.get("type") or "")
    value = evidence.get("value") if isinstance(evidence.get("value"), dict) else evidence
    if kind and "DuplicateVoteEvidence" not in kind:
        return None

    pubkey = value.get("PubKey") or value.get("pub_key")
    if isinstance(pubkey, dict) and pubkey.get("value"):
        return pubkey_address(str(pubkey["value"]))

    vote = value.get("VoteA") or value.get("vote_a")
    if isinstance(vote, dict) and vote.get("validator_address"):
        return normalize_address(vote["validator_address"])
    return None


class _BlockProbe(BaseProbe):
    async def _latest_block(self) -> LatestBlock:
        try:
            data = await self.ctx.fetch_json("/blocks/latest")
            return decode_latest_block(data)
        except ProbeError as exc:
            self.ctx.log.error("Failed to get latest block", error=str(exc))
            raise


class MissingSignatureProbe(_BlockProbe):
    """Watched validators absent from the latest block's last commit."""

    async def exec(self) -> Observation:
        self.ctx.log.info("Monitoring for validators that have missed signing the latest block")
        block = await self._latest_block()

        missing = self.ctx.addresses - block.signer_addresses()
        if not missing:
            raise NothingToReport("no validators matching filter missed the latest block")

        # The last commit carries precommits for the previous height.
        return make_observation(
            self.name,
            {"height": block.height - 1, "missing_signers": sorted_unique(missing)},
        )


class DoubleSignProbe(_BlockProbe):
    """Watched validators named by duplicate-vote evidence in the latest block."""

    async def exec(self) -> Observation:
        self.ctx.log.info("Monitoring for validators that have double signed")
        block = await self._latest_block()

        byzantine = set()
        for item in block.evidence:
            signer = duplicate_vote_signer(item)
            if signer and signer in self.ctx.addresses:
                byzantine.add(signer)

        if not byzantine:
            raise NothingToReport("no validators matching filter double signed")

        return make_observation(
            self.name,
            {"height": block.height - 1, "double_signers": sorted_unique(byzantine)},
        )
