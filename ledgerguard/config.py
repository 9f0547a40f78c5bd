"""YAML configuration loader for ledgerguard.

Loads dedup.yaml from the config/ directory. The file holds the
duplicate-detection policy: decision thresholds, the candidate window,
and the integration source used by the same-source scan pass.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import yaml


@dataclass(frozen=True)
class DedupPolicy:
    """Decision thresholds and scan knobs for duplicate detection.

    Thresholds are empirical; they are policy, not derived constants.
    """
    prevent_threshold: int = 98
    pending_threshold: int = 70
    duplicate_threshold: int = 60
    recent_window_days: int = 30
    integration_source: str = "api"
    amount_tolerance: float = 0.01

    def __post_init__(self):
        for name in ("prevent_threshold", "pending_threshold", "duplicate_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if not (self.duplicate_threshold <= self.pending_threshold <= self.prevent_threshold):
            raise ValueError(
                "Thresholds must satisfy duplicate <= pending <= prevent"
                f" (got {self.duplicate_threshold}, {self.pending_threshold},"
                f" {self.prevent_threshold})"
            )
        if self.recent_window_days < 0:
            raise ValueError("recent_window_days must not be negative")
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance must not be negative")

    @classmethod
    def from_dict(cls, data: dict) -> DedupPolicy:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown dedup policy keys: {sorted(unknown)}")
        return cls(**data)


class Config:
    """Loads and provides access to the YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._dedup: dict | None = None
        self._policy: DedupPolicy | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def dedup(self) -> dict:
        """Raw contents of dedup.yaml."""
        if self._dedup is None:
            data = self._load("dedup.yaml")
            if not isinstance(data, dict):
                raise ValueError(f"dedup.yaml must be a mapping, got {type(data).__name__}")
            self._dedup = data
        return self._dedup

    @property
    def policy(self) -> DedupPolicy:
        """DedupPolicy built from the ``policy`` section of dedup.yaml."""
        if self._policy is None:
            section = self.dedup.get("policy", {}) or {}
            self._policy = DedupPolicy.from_dict(section)
        return self._policy
