#!/usr/bin/env python3
"""
pyfastga: Python pipeline for the FastGA genome aligner

Drives the FAtoGDB/GIXmake/FastGA stages, streams per-query alignment sets
and filters alignments with a plane-sweep engine.
"""

__version__ = '0.1.0'
__author__ = 'FastGA Python Team'
__email__ = 'example@example.org'
__license__ = 'MIT'

# Import core modules for easier access
from .exceptions import FastGAError
from .pipelines import AlignmentPipeline, PipelineConfig, run, align_queries
from .filters import FilterConfig, filter_records

# Make key classes available at package level
__all__ = [
    'FastGAError', 'AlignmentPipeline', 'PipelineConfig', 'run', 'align_queries',
    'FilterConfig', 'filter_records',
]
