"""Pipeline configuration and JSON loading.

Every tunable constant of the pipeline lives on ``PipelineConfig``. A config
file is a flat JSON object whose keys are field names; keys starting with
``_`` are treated as comments and dropped.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from promptmark.io_utils import load_json


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    acceptance_floor: float = 0.3           # Minimum raw match score (0-1)
    sentence_fallback_min_chars: int = 100  # Single-paragraph length that triggers sentence split
    reanalysis_context_chars: int = 200     # Context window on each side for re-analysis
    feedback_window: int = 100              # Most recent feedback records kept
    overlap_merge_gap: int = 10             # Max confidence gap for same-category merge
    dedup_similarity: float = 0.8           # Token-overlap ratio treated as duplicate
    generation_floor: int = 20              # Sections below this are skipped at generation
    expansion_growth_cap: float = 0.5       # Max relative growth from boundary expansion

    def __post_init__(self) -> None:
        for name in ("acceptance_floor", "dedup_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        for name in (
            "sentence_fallback_min_chars",
            "reanalysis_context_chars",
            "overlap_merge_gap",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.feedback_window < 1:
            raise ValueError(f"feedback_window must be >= 1, got {self.feedback_window}")
        if not 0 <= self.generation_floor <= 100:
            raise ValueError(f"generation_floor must be in [0, 100], got {self.generation_floor}")
        if self.expansion_growth_cap < 0:
            raise ValueError(
                f"expansion_growth_cap must be >= 0, got {self.expansion_growth_cap}"
            )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def config_from_dict(payload: dict[str, Any]) -> PipelineConfig:
    known = {f.name: f for f in fields(PipelineConfig)}
    kwargs: dict[str, Any] = {}
    for key, value in payload.items():
        if not isinstance(key, str) or key.startswith("_"):
            continue
        if key not in known:
            raise ValueError(f"Unknown config key: {key!r}")
        default = known[key].default
        if isinstance(default, bool) or not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(f"Config key {key!r} must be numeric, got {value!r}")
        kwargs[key] = int(value) if isinstance(default, int) else float(value)
    return PipelineConfig(**kwargs)


def load_config(path: Path) -> PipelineConfig:
    """Load a ``PipelineConfig`` from a JSON file."""
    payload = load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Config payload must be a JSON object: {path}")
    return config_from_dict(payload)
