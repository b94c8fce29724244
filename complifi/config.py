"""
CompliFi configuration.

Sources, lowest to highest precedence:
    1. EngineConfig defaults
    2. YAML file               (EngineConfig.from_yaml)
    3. COMPLIFI_* environment  (EngineConfig.apply_env)

Policy files used by the CLI are YAML documents of the form:

    max_risk_score: 5
    require_kyc: true
    allowed_jurisdictions: [1, 44]
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from complifi.core.exceptions import CompliFiError
from complifi.program.processor import DEFAULT_PROGRAM_ID


class ConfigError(CompliFiError):
    """Raised when a configuration or policy file is invalid"""
    default_message = "Invalid configuration"


ENV_VARS = {
    "program_id":     "COMPLIFI_PROGRAM_ID",
    "state_path":     "COMPLIFI_STATE_PATH",
    "event_log_path": "COMPLIFI_EVENT_LOG",
    "log_level":      "COMPLIFI_LOG_LEVEL",
    "json_logs":      "COMPLIFI_JSON_LOGS",
}


@dataclass
class EngineConfig:
    program_id:     str  = DEFAULT_PROGRAM_ID
    state_path:     str  = ".complifi/accounts.json"
    event_log_path: str  = ".complifi/events.jsonl"
    log_level:      str  = "INFO"
    json_logs:      bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_yaml(cls, path: Path) -> "EngineConfig":
        """Load config from YAML file."""
        data = _load_yaml_mapping(path)
        return cls.from_dict(data)

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        env:  Optional[Mapping[str, str]] = None,
    ) -> "EngineConfig":
        """Defaults, then the YAML file if given, then environment overrides."""
        config = cls.from_yaml(path) if path else cls()
        return config.apply_env(os.environ if env is None else env)

    def apply_env(self, env: Mapping[str, str]) -> "EngineConfig":
        for attr, var in ENV_VARS.items():
            if var not in env:
                continue
            value: Any = env[var]
            if attr == "json_logs":
                value = value.strip().lower() in ("1", "true", "yes", "on")
            setattr(self, attr, value)
        return self


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


@dataclass
class PolicySpec:
    """A policy as written in a YAML policy file."""

    max_risk_score:        int
    require_kyc:           bool
    allowed_jurisdictions: List[int]

    @classmethod
    def from_yaml(cls, path: Path) -> "PolicySpec":
        data = _load_yaml_mapping(path)
        try:
            spec = cls(
                max_risk_score=        data["max_risk_score"],
                require_kyc=           data.get("require_kyc", False),
                allowed_jurisdictions= list(data.get("allowed_jurisdictions") or []),
            )
        except (KeyError, TypeError) as exc:
            raise ConfigError(f"Invalid policy file {path}: {exc}") from exc
        if not isinstance(spec.require_kyc, bool):
            raise ConfigError(f"require_kyc must be true or false in {path}")
        return spec
