from __future__ import annotations

from typing import Any

from chain_checks.probe_common import BaseProbe, NothingToReport, Observation, ProbeError, make_observation


JAILED_PROBE_NAME = "staking/jailed"
JAILED_PROBE_MEMO = "New Jailed Validators"


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def validator_operator(validator: dict[str, Any]) -> str:
    # Older LCDs call the operator "owner".
    return str(validator.get("operator") or validator.get("operator_address") or validator.get("owner") or "").strip()


def is_jailed(validator: dict[str, Any]) -> bool:
    return _truthy(validator.get("jailed")) or _truthy(validator.get("revoked"))


def decode_validators(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get("result"), list):
        data = data["result"]
    if data is None:
        return []
    if not isinstance(data, list):
        raise ProbeError(f"expected a JSON array of validators, got {type(data).__name__}")
    return [v for v in data if isinstance(v, dict)]


class JailedValidatorProbe(BaseProbe):
    """
    Watched validators currently jailed (revoked on older chains). The alert
    re-fires once the previous one ages out of the alert cache, so a validator
    that stays jailed is reported again every retention window.
    """

    async def exec(self) -> Observation:
        self.ctx.log.info("Monitoring for new jailed validators")
        try:
            validators = decode_validators(await self.ctx.fetch_json("/stake/validators"))
        except ProbeError as exc:
            self.ctx.log.error("Failed to get all validators", error=str(exc))
            raise

        jailed = [
            v for v in validators if validator_operator(v) in self.ctx.operators and is_jailed(v)
        ]
        if not jailed:
            raise NothingToReport("no validators matching filter are jailed")

        jailed.sort(key=validator_operator)
        return make_observation(self.name, jailed)
