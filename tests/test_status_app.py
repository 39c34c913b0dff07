from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from chain_checks.alert_cache import AlertCache
from chain_checks.status_app import create_app
from chain_checks.store import SqliteStore, StoreError
from chain_checks.summary import CycleSummary


def test_latest_execution_is_500_before_first_cycle(tmp_path) -> None:
    store = SqliteStore(tmp_path / "kv.db")
    try:
        client = TestClient(create_app(AlertCache(store)))
        resp = client.get("/executions/latest")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "no_execution_recorded"

        assert client.get("/health").json() == {"status": "ok"}
    finally:
        store.close()


def test_latest_execution_returns_stored_summary(tmp_path) -> None:
    store = SqliteStore(tmp_path / "kv.db")
    cache = AlertCache(store)
    summary = CycleSummary(
        failed_monitors=["staking/jailed"],
        successful_monitors=["gov/newProposals"],
        successful_alerts=["SendGrid"],
    )
    try:
        assert asyncio.run(cache.save_summary(summary))

        client = TestClient(create_app(cache))
        resp = client.get("/executions/latest")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json() == summary.to_dict()
    finally:
        store.close()


class _FailingCache:
    async def latest_summary_raw(self) -> bytes:
        raise StoreError("db locked")


def test_store_failure_is_500() -> None:
    client = TestClient(create_app(_FailingCache()))
    resp = client.get("/executions/latest")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "store_unavailable"
