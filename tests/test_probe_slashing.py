from __future__ import annotations

import base64
import hashlib
import json

import httpx
import pytest

from chain_checks.endpoints import EndpointSelector
from chain_checks.probe_common import NothingToReport, ProbeContext, ProbeError
from chain_checks.probe_slashing import (
    DOUBLE_SIGN_PROBE_MEMO,
    DOUBLE_SIGN_PROBE_NAME,
    MISSING_SIG_PROBE_MEMO,
    MISSING_SIG_PROBE_NAME,
    DoubleSignProbe,
    MissingSignatureProbe,
    decode_latest_block,
    duplicate_vote_signer,
    pubkey_address,
)


ADDR_X = "AAAA0000AAAA0000AAAA0000AAAA0000AAAA0000"
ADDR_Y = "BBBB1111BBBB1111BBBB1111BBBB1111BBBB1111"
ADDR_Z = "CCCC2222CCCC2222CCCC2222CCCC2222CCCC2222"


def _block(height: int, signers: list[str | None], evidence: list | None = None) -> dict:
    precommits = [None if s is None else {"validator_address": s, "height": str(height - 1)} for s in signers]
    return {
        "block_meta": {"block_id": {"hash": "ABC"}},
        "block": {
            "header": {"chain_id": "test-chain", "height": str(height)},
            "evidence": {"evidence": evidence},
            "last_commit": {"precommits": precommits},
        },
    }


def _ctx(name: str, memo: str, base_url: str, client: httpx.AsyncClient, addresses: list[str]) -> ProbeContext:
    return ProbeContext(
        name=name,
        memo=memo,
        selector=EndpointSelector([base_url]),
        client=client,
        addresses=frozenset(addresses),
        timeout_seconds=2.0,
    )


def test_decode_latest_block_tolerates_nulls() -> None:
    block = decode_latest_block(_block(10, [ADDR_X, None]))
    assert block.height == 10
    assert block.signer_addresses() == {ADDR_X}
    assert block.evidence == []


def test_decode_latest_block_rejects_missing_header() -> None:
    with pytest.raises(ProbeError):
        decode_latest_block({"block": {"last_commit": {}}})
    with pytest.raises(ProbeError):
        decode_latest_block({"block": {"header": {"height": "abc"}}})
    with pytest.raises(ProbeError):
        decode_latest_block([])


def test_pubkey_address_is_truncated_sha256() -> None:
    raw = bytes(range(32))
    expected = hashlib.sha256(raw).digest()[:20].hex().upper()
    assert pubkey_address(base64.b64encode(raw).decode()) == expected

    with pytest.raises(ProbeError):
        pubkey_address("not base64!!")


def test_duplicate_vote_signer_shapes() -> None:
    raw = b"\x01" * 32
    with_pubkey = {
        "type": "tendermint/DuplicateVoteEvidence",
        "value": {"PubKey": {"type": "tendermint/PubKeyEd25519", "value": base64.b64encode(raw).decode()}},
    }
    assert duplicate_vote_signer(with_pubkey) == hashlib.sha256(raw).digest()[:20].hex().upper()

    with_vote = {"type": "tendermint/DuplicateVoteEvidence", "value": {"vote_a": {"validator_address": ADDR_Z.lower()}}}
    assert duplicate_vote_signer(with_vote) == ADDR_Z

    assert duplicate_vote_signer({"type": "tendermint/LightClientAttackEvidence", "value": {}}) is None
    assert duplicate_vote_signer("junk") is None


@pytest.mark.asyncio
async def test_missing_signature_reports_absent_watched_validator(fake_lcd) -> None:
    fake_lcd.route("/blocks/latest", _block(101, [ADDR_X, ADDR_Z, None]))
    async with httpx.AsyncClient() as client:
        probe = MissingSignatureProbe(
            _ctx(MISSING_SIG_PROBE_NAME, MISSING_SIG_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_X, ADDR_Y])
        )
        obs = await probe.exec()

    assert json.loads(obs.payload) == {"height": 100, "missing_signers": [ADDR_Y]}
    assert obs.identity == hashlib.sha256(obs.payload).digest()


@pytest.mark.asyncio
async def test_missing_signature_all_signed_is_nothing_to_report(fake_lcd) -> None:
    fake_lcd.route("/blocks/latest", _block(50, [ADDR_X, ADDR_Y]))
    async with httpx.AsyncClient() as client:
        probe = MissingSignatureProbe(
            _ctx(MISSING_SIG_PROBE_NAME, MISSING_SIG_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_X.lower()])
        )
        with pytest.raises(NothingToReport):
            await probe.exec()


@pytest.mark.asyncio
async def test_missing_signature_lists_are_sorted(fake_lcd) -> None:
    fake_lcd.route("/blocks/latest", _block(7, []))
    async with httpx.AsyncClient() as client:
        probe = MissingSignatureProbe(
            _ctx(MISSING_SIG_PROBE_NAME, MISSING_SIG_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_Z, ADDR_X, ADDR_Y])
        )
        obs = await probe.exec()

    assert json.loads(obs.payload)["missing_signers"] == [ADDR_X, ADDR_Y, ADDR_Z]


@pytest.mark.asyncio
async def test_double_sign_reports_only_watched_signers(fake_lcd) -> None:
    evidence = [
        {"type": "tendermint/DuplicateVoteEvidence", "value": {"VoteA": {"validator_address": ADDR_X}}},
        {"type": "tendermint/DuplicateVoteEvidence", "value": {"VoteA": {"validator_address": ADDR_Z}}},
    ]
    fake_lcd.route("/blocks/latest", _block(20, [ADDR_X, ADDR_Y], evidence))
    async with httpx.AsyncClient() as client:
        probe = DoubleSignProbe(
            _ctx(DOUBLE_SIGN_PROBE_NAME, DOUBLE_SIGN_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_X, ADDR_Y])
        )
        obs = await probe.exec()

    assert json.loads(obs.payload) == {"height": 19, "double_signers": [ADDR_X]}


@pytest.mark.asyncio
async def test_double_sign_without_evidence_is_nothing_to_report(fake_lcd) -> None:
    fake_lcd.route("/blocks/latest", _block(20, [ADDR_X], None))
    async with httpx.AsyncClient() as client:
        probe = DoubleSignProbe(
            _ctx(DOUBLE_SIGN_PROBE_NAME, DOUBLE_SIGN_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_X])
        )
        with pytest.raises(NothingToReport):
            await probe.exec()


@pytest.mark.asyncio
async def test_malformed_block_is_probe_error(fake_lcd) -> None:
    fake_lcd.route("/blocks/latest", {"unexpected": True})
    async with httpx.AsyncClient() as client:
        probe = MissingSignatureProbe(
            _ctx(MISSING_SIG_PROBE_NAME, MISSING_SIG_PROBE_MEMO, fake_lcd.base_url, client, [ADDR_X])
        )
        with pytest.raises(ProbeError) as excinfo:
            await probe.exec()
    assert not isinstance(excinfo.value, NothingToReport)
