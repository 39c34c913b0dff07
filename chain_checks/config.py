"""Configuration loading and validation for the chain monitor."""

from __future__ import annotations

import copy
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


MONITOR_ALL = "*"
MONITOR_NEW_PROPOSALS = "new_proposals"
MONITOR_ACTIVE_PROPOSALS = "active_proposals"
MONITOR_JAILED_VALIDATORS = "jailed_validators"
MONITOR_DOUBLE_SIGNING = "double_signing"
MONITOR_MISSING_SIGNATURES = "missing_signatures"

# Canonical execution order when "*" or several monitors are enabled.
MONITOR_ORDER = (
    MONITOR_NEW_PROPOSALS,
    MONITOR_ACTIVE_PROPOSALS,
    MONITOR_JAILED_VALIDATORS,
    MONITOR_DOUBLE_SIGNING,
    MONITOR_MISSING_SIGNATURES,
)
VALID_MONITORS = frozenset((MONITOR_ALL, *MONITOR_ORDER))

DEFAULT_CONFIG_PATH = Path.home() / ".chain-checks" / "config.yaml"

_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")
_BECH32_RE = re.compile(r"^[a-z]+1[02-9ac-hj-np-z]+$")


class ConfigError(ValueError):
    """Raised when the configuration file is missing or invalid."""


class DatabaseConfig(BaseModel):
    data_dir: str = Field(..., min_length=1, description="Directory holding the embedded alert database")


class NetworkConfig(BaseModel):
    listen_addr: str = Field(default="0.0.0.0:36655", description="host:port of the status endpoint")
    clients: list[str] = Field(default_factory=list, description="Trusted LCD endpoints, used round robin")
    shared_client_pool: bool = Field(default=False, description="Share one round-robin cursor across all probes")
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @field_validator("clients")
    @classmethod
    def _clients_are_urls(cls, value: list[str]) -> list[str]:
        out = []
        for raw in value:
            url = str(raw or "").strip()
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"client {raw!r} must be an http(s) URL")
            out.append(url.rstrip("/"))
        if not out:
            raise ValueError("at least one client endpoint is required")
        return out

    @property
    def listen_host_port(self) -> tuple[str, int]:
        host, _, port = self.listen_addr.rpartition(":")
        try:
            return (host or "0.0.0.0"), int(port)
        except ValueError as exc:
            raise ConfigError(f"invalid listen_addr {self.listen_addr!r}") from exc


class TargetsConfig(BaseModel):
    webhooks: list[str] = Field(default_factory=list)
    sms_recipients: list[str] = Field(default_factory=list)
    email_recipients: list[str] = Field(default_factory=list)
    telegram_chat_ids: list[str] = Field(default_factory=list)

    @field_validator("webhooks")
    @classmethod
    def _webhooks_are_urls(cls, value: list[str]) -> list[str]:
        for url in value:
            if not str(url).startswith(("http://", "https://")):
                raise ValueError(f"webhook {url!r} must be an http(s) URL")
        return value

    @field_validator("email_recipients")
    @classmethod
    def _emails_look_valid(cls, value: list[str]) -> list[str]:
        for email in value:
            if "@" not in str(email):
                raise ValueError(f"invalid email recipient {email!r}")
        return value

    @field_validator("telegram_chat_ids", mode="before")
    @classmethod
    def _chat_ids_as_str(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    def is_empty(self) -> bool:
        return not (self.webhooks or self.sms_recipients or self.email_recipients or self.telegram_chat_ids)


class ValidatorFilter(BaseModel):
    operator: str = Field(..., min_length=1, description="Bech32 operator/owner address")
    address: str = Field(..., min_length=1, description="Hex consensus address")

    @field_validator("operator")
    @classmethod
    def _operator_is_bech32(cls, value: str) -> str:
        value = value.strip()
        if not _BECH32_RE.match(value):
            raise ValueError(f"operator {value!r} is not a bech32 address")
        return value

    @field_validator("address")
    @classmethod
    def _address_is_hex(cls, value: str) -> str:
        value = value.strip()
        if not _HEX_RE.match(value):
            raise ValueError(f"address {value!r} is not hexadecimal")
        return value.upper()


class FiltersConfig(BaseModel):
    validators: list[ValidatorFilter] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_singular_key(cls, data: Any) -> Any:
        # The template uses a single [filters.validator] mapping; accept both shapes.
        if isinstance(data, dict) and "validators" not in data and "validator" in data:
            raw = data["validator"]
            data = {**data, "validators": raw if isinstance(raw, list) else [raw]}
        return data


class SendGridConfig(BaseModel):
    api_key: str = ""
    from_name: str = "Chain Checks"
    from_address: str = "chain-checks@sendgrid.net"


class TelegramIntegrationConfig(BaseModel):
    bot_token: str = ""


class IntegrationsConfig(BaseModel):
    sendgrid: SendGridConfig = Field(default_factory=SendGridConfig)
    telegram: TelegramIntegrationConfig = Field(default_factory=TelegramIntegrationConfig)


class AlertingConfig(BaseModel):
    retention_days: float = Field(default=30.0, gt=0, description="Days before an alerted event may alert again")


class ChainChecksConfig(BaseModel):
    """Main configuration for the chain monitor."""

    poll_interval: int = Field(..., gt=10, description="Seconds between poll cycles")
    monitors: list[str] = Field(..., min_length=1)
    probe_concurrency: int = Field(default=1, ge=1, le=16, description="Probes executed in parallel per cycle")
    database: DatabaseConfig
    network: NetworkConfig
    targets: TargetsConfig
    filters: FiltersConfig
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)
    alerting: AlertingConfig = Field(default_factory=AlertingConfig)

    @field_validator("monitors")
    @classmethod
    def _monitors_are_known(cls, value: list[str]) -> list[str]:
        for name in value:
            if name not in VALID_MONITORS:
                raise ValueError(f"unknown monitor {name!r}")
        if MONITOR_ALL in value and len(value) > 1:
            raise ValueError("'*' cannot be combined with specific monitors")
        return value

    @model_validator(mode="after")
    def _targets_are_deliverable(self) -> "ChainChecksConfig":
        if self.targets.is_empty():
            raise ValueError("no alert targets provided")
        if (self.targets.email_recipients or self.targets.sms_recipients) and not self.integrations.sendgrid.api_key:
            raise ValueError("integrations.sendgrid.api_key is required for email/SMS targets")
        if self.targets.telegram_chat_ids and not self.integrations.telegram.bot_token:
            raise ValueError("integrations.telegram.bot_token is required for Telegram targets")
        return self

    def enabled_monitors(self) -> list[str]:
        if MONITOR_ALL in self.monitors:
            return list(MONITOR_ORDER)
        return [m for m in MONITOR_ORDER if m in self.monitors]

    @property
    def retention_seconds(self) -> float:
        return float(self.alerting.retention_days) * 86400.0


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    integrations = data.setdefault("integrations", {}) or {}
    data["integrations"] = integrations

    sendgrid_key = os.getenv("SENDGRID_API_KEY")
    if sendgrid_key:
        integrations.setdefault("sendgrid", {})
        integrations["sendgrid"] = {**(integrations["sendgrid"] or {}), "api_key": sendgrid_key}

    telegram_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if telegram_token:
        integrations.setdefault("telegram", {})
        integrations["telegram"] = {**(integrations["telegram"] or {}), "bot_token": telegram_token}

    data_dir = os.getenv("CHAIN_CHECKS_DATA_DIR")
    if data_dir:
        data["database"] = {**(data.get("database") or {}), "data_dir": data_dir}
    return data


def parse_config(data: Any) -> ChainChecksConfig:
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    try:
        return ChainChecksConfig.model_validate(_apply_env_overrides(copy.deepcopy(data)))
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def load_config(path: Path | str | None = None) -> ChainChecksConfig:
    """Load configuration from a YAML file with environment overrides."""
    p = Path(path) if path else DEFAULT_CONFIG_PATH
    if not p.exists():
        raise ConfigError(f"config file not found: {p} (run with --init-config to create one)")
    with open(p, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"config file {p} is not valid YAML: {exc}") from exc
    return parse_config(data)


DEFAULT_CONFIG_TEMPLATE = """\
# chain-checks configuration (YAML)

# Poll interval in seconds (must be greater than 10)
poll_interval: 15

# Monitors to enable. '*' enables all of them and cannot be combined with others.
monitors:
  - new_proposals
  - active_proposals
  - jailed_validators
  - double_signing
  - missing_signatures

# Probes run in parallel per cycle (1 = sequential)
probe_concurrency: 1

# Data directory used for the embedded alert database
database:
  data_dir: "{data_dir}"

network:
  # Status endpoint (GET /executions/latest)
  listen_addr: "0.0.0.0:36655"
  # Trusted LCD endpoints; used in a round-robin fashion
  clients:
    - "https://lcd.example.org:1317"
  shared_client_pool: false
  request_timeout_seconds: 10

# Alert targets. Email and SMS go through SendGrid.
targets:
  webhooks: []
  sms_recipients: []
  email_recipients:
    - "foo@bar.com"
  telegram_chat_ids: []

# Validators to watch: bech32 operator address and hex consensus address
filters:
  validators:
    - operator: "cosmosaccaddr1chchjxgackcqkn9fqgpsc4n9xamx4flgndapzg"
      address: "DBA70FA7E9D55E035AD87B41C4DC0C38511FD09A"

integrations:
  sendgrid:
    api_key: ""   # or SENDGRID_API_KEY
    from_name: "Chain Checks"
  telegram:
    bot_token: "" # or TELEGRAM_BOT_TOKEN

alerting:
  # Days before an already alerted event may alert again
  retention_days: 30
"""


def write_default_config(path: Path | str | None = None, *, overwrite: bool = False) -> Path:
    p = Path(path) if path else DEFAULT_CONFIG_PATH
    if p.exists() and not overwrite:
        raise ConfigError(f"refusing to overwrite existing config: {p}")
    p.parent.mkdir(parents=True, exist_ok=True)
    data_dir = p.parent / "data"
    p.write_text(DEFAULT_CONFIG_TEMPLATE.replace("{data_dir}", str(data_dir)), encoding="utf-8")
    return p
