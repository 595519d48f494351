#!/usr/bin/env python3
"""
Process execution for pipeline stages
"""
from .base import ProcessRunner, StageOutput, StreamingProcess
from .local import LocalProcessRunner, LocalStreamingProcess, terminate_process

__all__ = [
    'ProcessRunner', 'StageOutput', 'StreamingProcess',
    'LocalProcessRunner', 'LocalStreamingProcess', 'terminate_process',
]
