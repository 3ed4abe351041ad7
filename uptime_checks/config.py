"""Configuration and target-list loading for the uptime checker."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from uptime_checks.probe import DEFAULT_REQUEST_TIMEOUT_SECONDS, Target
from uptime_checks.throttle import DEFAULT_RELEASE_DELAY_SECONDS


LOGGER = logging.getLogger("uptime-checks")

DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")
DEFAULT_TARGETS_PATH = Path(__file__).with_name("url.txt")


class ConfigError(ValueError):
    """Raised when the configuration or target list cannot be loaded."""


class RoundConfig(BaseModel):
    """Settings shared by every round; loaded once at startup."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    interval_minutes: float = Field(alias="time", gt=0, description="Minutes between rounds")
    max_parallel: int = Field(alias="parallel", gt=0, description="Maximum probes in flight at once")
    rules: Dict[str, Optional[str]] = Field(
        default_factory=dict, description="Address -> substring expected in the response body"
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0, description="Per-request timeout"
    )
    release_delay_seconds: float = Field(
        default=DEFAULT_RELEASE_DELAY_SECONDS, ge=0, description="Time a slot stays reserved after its probe"
    )
    overlap_policy: Literal["allow", "skip"] = Field(
        default="allow", description="What to do with a tick that arrives while a round is still running"
    )

    @property
    def interval_seconds(self) -> float:
        return float(self.interval_minutes) * 60.0

    def rule_for(self, address: str) -> str | None:
        # Missing address, None and "" all mean "no content check".
        expected = self.rules.get(address)
        return expected or None


def _env_overrides() -> dict[str, Any]:
    overrides = {
        "time": os.getenv("UPTIME_INTERVAL_MINUTES"),
        "parallel": os.getenv("UPTIME_MAX_PARALLEL"),
        "overlap_policy": os.getenv("UPTIME_OVERLAP_POLICY"),
    }
    return {k: v for k, v in overrides.items() if v is not None and str(v).strip()}


def _known_keys() -> set[str]:
    keys: set[str] = set()
    for name, field in RoundConfig.model_fields.items():
        keys.add(name)
        if field.alias:
            keys.add(field.alias)
    return keys


def load_config(path: Path | str | None = None) -> RoundConfig:
    """Load the round configuration from YAML, then apply environment overrides."""
    if path is None:
        path = os.getenv("UPTIME_CONFIG", DEFAULT_CONFIG_PATH)
    path = Path(path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config path={path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config path={path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")

    data.update(_env_overrides())
    if isinstance(data.get("rules"), dict):
        data["rules"] = {str(k): (None if v is None else str(v)) for k, v in data["rules"].items()}

    unknown = set(data) - _known_keys()
    if unknown:
        LOGGER.warning("Ignoring unknown config keys path=%s keys=%s", path, sorted(str(k) for k in unknown))

    try:
        return RoundConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config path={path}: {exc}") from exc


def parse_targets(lines: list[str]) -> list[Target]:
    targets: list[Target] = []
    for line in lines:
        address = line.strip()
        if not address or address.startswith("#"):
            continue
        targets.append(Target(address=address))
    return targets


def load_targets(path: Path | str | None = None) -> list[Target]:
    """Read one address per line; blank lines and ``#`` comments are skipped, duplicates kept."""
    if path is None:
        path = os.getenv("UPTIME_TARGETS", DEFAULT_TARGETS_PATH)
    path = Path(path)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read targets path={path}: {exc}") from exc

    targets = parse_targets(text.splitlines())
    if not targets:
        raise ConfigError(f"No targets found in path={path}")
    return targets
