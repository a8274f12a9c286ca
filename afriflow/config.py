"""
afriflow/config.py

Settlement configuration.

SettlementConfig is built once and injected into SettlementService. Nothing
in AfriFlow reads configuration from module globals. Runtime changes go
through the service's administrative API, which re-validates the bounds
enforced here.

Sources, lowest priority first:
    1. dataclass defaults
    2. YAML file              SettlementConfig.from_yaml(path)
    3. AFRIFLOW_* environment SettlementConfig.from_env(base)

Example YAML:

    treasury: "0x000000000000000000000000000000000000dEaD"
    fee_bps: 10
    escrow_fee_bps: 15
    supported_tokens:
      - "0xc21223249CA28397B4B6541dfFaEcC539BfF0c59"
    facilitator_url: "https://facilitator.example/x402"
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from afriflow.core.exceptions import ConfigError
from afriflow.core.models import encode_corridor, normalize_address


MAX_FEE_BPS = 100

DEFAULT_REGIONAL_CORRIDORS = ["NG", "KE", "ZA", "GH", "TZ", "UG", "ZW", "EG", "MA", "SN"]
DEFAULT_EXTERNAL_CORRIDORS = ["US", "GB", "EU", "AE", "CN"]

_ENV_PREFIX = "AFRIFLOW_"


def validate_fee_bps(value: Any, name: str = "fee_bps") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an int", {name: value})
    if not 0 <= value <= MAX_FEE_BPS:
        raise ConfigError(
            f"{name} out of range",
            {name: value, "max": MAX_FEE_BPS},
        )
    return value


@dataclass
class SettlementConfig:
    treasury:               str
    admin:                  Optional[str] = None
    fee_bps:                int = 10
    escrow_fee_bps:         int = 15
    supported_tokens:       List[str] = field(default_factory=list)
    min_payment_amount:     int = 1_000_000
    min_escrow_amount:      int = 1_000_000
    max_batch_size:         int = 50
    max_milestones:         int = 20
    dispute_window_seconds: int = 86_400
    regional_corridors:     List[str] = field(default_factory=lambda: list(DEFAULT_REGIONAL_CORRIDORS))
    external_corridors:     List[str] = field(default_factory=lambda: list(DEFAULT_EXTERNAL_CORRIDORS))
    facilitator_url:        Optional[str] = None
    facilitator_timeout:    float = 10.0
    authorization_ttl:      int = 3600
    chain_id:               int = 338
    asset_name:             str = "USD Coin"
    asset_version:          str = "2"
    asset_contract:         Optional[str] = None
    signer_private_key:     Optional[str] = None
    journal_path:           Optional[str] = None

    def __post_init__(self) -> None:
        self.validate()

    # ── Validation ────────────────────────────────────────────

    def validate(self) -> None:
        """Raise ConfigError on the first invalid field. Normalizes addresses."""
        self.treasury = normalize_address(self.treasury, error=ConfigError, field_name="treasury")
        if self.admin is not None:
            self.admin = normalize_address(self.admin, error=ConfigError, field_name="admin")
        if self.asset_contract is not None:
            self.asset_contract = normalize_address(
                self.asset_contract, error=ConfigError, field_name="asset_contract"
            )
        self.supported_tokens = [
            normalize_address(t, error=ConfigError, field_name="supported_tokens")
            for t in self.supported_tokens
        ]

        validate_fee_bps(self.fee_bps, "fee_bps")
        validate_fee_bps(self.escrow_fee_bps, "escrow_fee_bps")

        for name in ("min_payment_amount", "min_escrow_amount"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1", {name: getattr(self, name)})
        for name in ("max_batch_size", "max_milestones", "authorization_ttl", "chain_id"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1", {name: getattr(self, name)})
        if self.dispute_window_seconds < 0:
            raise ConfigError("dispute_window_seconds must be >= 0")
        if self.facilitator_timeout <= 0:
            raise ConfigError("facilitator_timeout must be > 0")

        for name in ("regional_corridors", "external_corridors"):
            for code in getattr(self, name):
                try:
                    encode_corridor(code)
                except ValueError as exc:
                    raise ConfigError(f"Invalid corridor code in {name}: {exc}", {name: code}) from exc

        overlap = set(self.regional_corridors) & set(self.external_corridors)
        if overlap:
            raise ConfigError(
                "Corridor codes cannot be both regional and external",
                {"codes": ",".join(sorted(overlap))},
            )

    # ── Loading ───────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SettlementConfig":
        known   = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError("Unknown configuration keys", {"keys": ",".join(unknown)})
        if "treasury" not in data:
            raise ConfigError("treasury is required")
        return cls(**dict(data))

    @classmethod
    def from_yaml(cls, path: Path) -> "SettlementConfig":
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_env(
        cls,
        base:    Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SettlementConfig":
        """
        Overlay AFRIFLOW_<FIELD> variables onto `base`.
        Lists are comma separated; ints/floats are parsed per field type.
        """
        environ = os.environ if environ is None else environ
        merged: Dict[str, Any] = dict(base or {})

        for f in fields(cls):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            merged[f.name] = _parse_env_value(f.name, raw, f.default)

        return cls.from_mapping(merged)

    def with_overrides(self, **changes: Any) -> "SettlementConfig":
        """Copy with changes applied and re-validated."""
        return replace(self, **changes)


def _parse_env_value(name: str, raw: str, default: Any) -> Any:
    if name in ("supported_tokens", "regional_corridors", "external_corridors"):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an int", {name: raw}) from exc
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be a number", {name: raw}) from exc
    return raw
