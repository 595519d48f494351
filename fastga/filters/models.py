#!/usr/bin/env python3
"""
Configuration and result models for the filter engine
"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from fastga.exceptions import ConfigurationError
from fastga.filters.scoring import DEFAULT_SCORE, SCORES
from fastga.models.alignment import AlignmentRecord

OVERLAP_AXES = ('query', 'target')


@dataclass(frozen=True)
class FilterConfig:
    """Immutable filter settings; 0 limits mean unlimited"""
    merge_distance: Optional[int] = None
    max_per_query: int = 0
    max_per_target: int = 0
    min_identity: float = 0.0
    min_length: int = 0
    max_overlap: float = 1.0
    reciprocal_best: bool = False
    score: str = DEFAULT_SCORE
    overlap_axis: str = 'query'

    def __post_init__(self):
        if self.merge_distance is not None and self.merge_distance < 0:
            raise ConfigurationError(f"merge_distance must be non-negative, got {self.merge_distance}")
        if self.max_per_query < 0 or self.max_per_target < 0:
            raise ConfigurationError("max_per_query and max_per_target must be non-negative")
        if not 0.0 <= self.min_identity <= 1.0:
            raise ConfigurationError(f"min_identity must be in [0, 1], got {self.min_identity}")
        if self.min_length < 0:
            raise ConfigurationError(f"min_length must be non-negative, got {self.min_length}")
        if not 0.0 <= self.max_overlap <= 1.0:
            raise ConfigurationError(f"max_overlap must be in [0, 1], got {self.max_overlap}")
        if self.score not in SCORES:
            raise ConfigurationError(f"Unknown score {self.score!r}")
        if self.overlap_axis not in OVERLAP_AXES:
            raise ConfigurationError(f"overlap_axis must be one of {OVERLAP_AXES}, "
                                     f"got {self.overlap_axis!r}")

    @property
    def merges(self) -> bool:
        return self.merge_distance is not None

    @property
    def sparsifies(self) -> bool:
        # Overlap fractions never exceed 1.0
        return self.max_overlap < 1.0

    @classmethod
    def from_config(cls, config_manager) -> 'FilterConfig':
        """Build from the `filter` section of a ConfigManager

        Raises:
            ConfigurationError: If a value is out of range
        """
        section = config_manager.get_section('filter')
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in section.items() if k in known})


@dataclass
class FilterStats:
    """Counts of records removed at each filter stage"""
    total: int = 0
    invalid: int = 0
    merged: int = 0
    filtered_by_identity: int = 0
    filtered_by_length: int = 0
    filtered_by_limit: int = 0
    filtered_by_overlap: int = 0
    filtered_by_reciprocity: int = 0
    kept: int = 0

    def add(self, other: 'FilterStats') -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class FilterResult:
    records: List[AlignmentRecord] = field(default_factory=list)
    stats: FilterStats = field(default_factory=FilterStats)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)
