#!/usr/bin/env python3
"""
Scoring functions for ranking alignment records

Every filter that picks a "best" record ranks by the same total order:
score descending, block length descending, target start ascending, then
target id, query start and query id ascending.
"""
import math
from typing import Callable, Dict, Tuple

from fastga.exceptions import ConfigurationError
from fastga.models.alignment import AlignmentRecord

ScoreFunction = Callable[[AlignmentRecord], float]

SCORES: Dict[str, ScoreFunction] = {}

DEFAULT_SCORE = "identity_log_length"


def register_score(name: str):
    """Decorator registering a score function under a name"""
    def decorator(func: ScoreFunction) -> ScoreFunction:
        SCORES[name] = func
        return func
    return decorator


@register_score("identity_log_length")
def identity_log_length(record: AlignmentRecord) -> float:
    """identity x ln(block length)"""
    return record.identity * math.log(max(record.block_length, 1))


@register_score("identity")
def identity(record: AlignmentRecord) -> float:
    return record.identity


@register_score("length")
def length(record: AlignmentRecord) -> float:
    return float(record.block_length)


@register_score("matches")
def matches(record: AlignmentRecord) -> float:
    """Estimated matching bases: identity x block length"""
    return record.identity * record.block_length


def get_score(name: str) -> ScoreFunction:
    """Look up a registered score function

    Raises:
        ConfigurationError: If no function is registered under the name
    """
    try:
        return SCORES[name]
    except KeyError:
        raise ConfigurationError(f"Unknown score {name!r}; available: {', '.join(sorted(SCORES))}")


def rank_key(score: ScoreFunction) -> Callable[[AlignmentRecord], Tuple]:
    """Sort key placing the best record first"""
    def key(record: AlignmentRecord) -> Tuple:
        return (-score(record), -record.block_length, record.target_start,
                record.target_id, record.query_start, record.query_id)
    return key
