"""Per-campaign settings with defaults.

Stored settings are partial dicts. Each section is merged over its
defaults, so a campaign that only sets ``{"search": {"result_limit": 4}}``
still gets every other default.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List

AGGRESSIVENESS_LEVELS = ("conservative", "balanced", "obsessive")


def _coerce(obj: Any, name: str, kind: type) -> None:
    """Convert ``obj.name`` to *kind* in place, raising ValueError on bad input.

    Booleans are never accepted as numbers, and numbers are never
    accepted as booleans.
    """
    value = getattr(obj, name)
    if kind is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be a boolean, got {value!r}")
        return
    if isinstance(value, bool):
        raise ValueError(f"{name} must be {kind.__name__}, got {value!r}")
    try:
        converted = kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be {kind.__name__}, got {value!r}") from exc
    if kind is int and isinstance(value, float) and converted != value:
        raise ValueError(f"{name} must be int, got {value!r}")
    setattr(obj, name, converted)


@dataclass
class ExtractionSettings:
    aggressiveness: str = "obsessive"
    chunk_size: int = 6000
    confidence_threshold: float = 0.5
    enable_relationships: bool = True
    max_chunks: int = 15
    parallel_batch_size: int = 3
    custom_prompts: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.aggressiveness not in AGGRESSIVENESS_LEVELS:
            raise ValueError(
                f"aggressiveness must be one of {AGGRESSIVENESS_LEVELS}, got {self.aggressiveness!r}"
            )
        for name in ("chunk_size", "max_chunks", "parallel_batch_size"):
            _coerce(self, name, int)
        _coerce(self, "confidence_threshold", float)
        _coerce(self, "enable_relationships", bool)
        if not isinstance(self.custom_prompts, dict):
            raise ValueError("custom_prompts must be an object of prompt name to text")
        if self.chunk_size < 200:
            raise ValueError("chunk_size must be >= 200")
        if self.max_chunks < 1 or self.parallel_batch_size < 1:
            raise ValueError("max_chunks and parallel_batch_size must be >= 1")


@dataclass
class VisibilitySettings:
    default_restricted: bool = False
    restricted_entity_types: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        _coerce(self, "default_restricted", bool)
        if not isinstance(self.restricted_entity_types, list) or not all(
            isinstance(t, str) for t in self.restricted_entity_types
        ):
            raise ValueError("restricted_entity_types must be a list of strings")

    def is_restricted(self, entity_type: str) -> bool:
        return self.default_restricted or entity_type in self.restricted_entity_types


@dataclass
class SearchSettings:
    similarity_threshold: float = 0.15
    result_limit: int = 8

    def __post_init__(self) -> None:
        _coerce(self, "similarity_threshold", float)
        _coerce(self, "result_limit", int)
        if self.result_limit < 1:
            raise ValueError("result_limit must be >= 1")


@dataclass
class CampaignSettings:
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    visibility: VisibilitySettings = field(default_factory=VisibilitySettings)
    search: SearchSettings = field(default_factory=SearchSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignSettings":
        data = data or {}
        return cls(
            extraction=_section(ExtractionSettings, data.get("extraction")),
            visibility=_section(VisibilitySettings, data.get("visibility")),
            search=_section(SearchSettings, data.get("search")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _section(kind: type, values: Any) -> Any:
    if values is not None and not isinstance(values, dict):
        raise ValueError(f"{kind.__name__} must be an object, got {values!r}")
    known = {f.name for f in fields(kind)}
    return kind(**{k: v for k, v in (values or {}).items() if k in known})


def load_campaign_settings(storage: Any, campaign_id: str) -> CampaignSettings:
    return CampaignSettings.from_dict(storage.get_settings(campaign_id))
