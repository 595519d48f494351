#!/usr/bin/env python3
"""
Pipeline orchestration: process driver, run models and query streaming
"""
from .driver import AlignmentPipeline, AlignmentOutputStream, run, align_queries
from .models import (
    OutputFormat, PipelineConfig, PipelineRun, PipelineState, StageResult
)
from .streaming import QueryAlignmentIterator, iterate

__all__ = [
    'AlignmentPipeline', 'AlignmentOutputStream', 'run', 'align_queries',
    'OutputFormat', 'PipelineConfig', 'PipelineRun', 'PipelineState', 'StageResult',
    'QueryAlignmentIterator', 'iterate',
]
