#!/usr/bin/env python3
"""
Plane-sweep filter engine for alignment records
"""
from .models import FilterConfig, FilterResult, FilterStats
from .plane_sweep import (
    chain_merge, remove_weak, top_n, sparsify_overlaps, reciprocal_best,
    filter_records, QueryStreamFilter
)
from .scoring import SCORES, get_score, rank_key, register_score

__all__ = [
    'FilterConfig', 'FilterResult', 'FilterStats',
    'chain_merge', 'remove_weak', 'top_n', 'sparsify_overlaps', 'reciprocal_best',
    'filter_records', 'QueryStreamFilter',
    'SCORES', 'get_score', 'rank_key', 'register_score',
]
