#!/usr/bin/env python3
"""
Exception hierarchy for the FastGA pipeline.
All custom exceptions should inherit from FastGAError.
"""
from typing import Dict, Any, Optional


class FastGAError(Exception):
    """Base exception for all FastGA-related errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize with error message and optional details

        Args:
            message: Error message
            details: Optional details dictionary with context
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(FastGAError):
    """Bad input paths, arguments or structurally invalid records"""
    pass


class ConfigurationError(ValidationError):
    """Error related to configuration issues"""
    pass


class FileOperationError(FastGAError):
    """Error during file operations"""

    def __init__(self, message: str, path: Optional[str] = None,
                 cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if path is not None:
            details.setdefault('path', str(path))
        if cause is not None:
            details.setdefault('cause', str(cause))
        super().__init__(message, details)
        self.path = path
        self.cause = cause


class FormatError(FastGAError):
    """Malformed tabular line or binary container"""

    def __init__(self, message: str, line_number: Optional[int] = None,
                 line: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if line_number is not None:
            details.setdefault('line_number', line_number)
        if line is not None:
            details.setdefault('line', line)
        super().__init__(message, details)
        self.line_number = line_number
        self.line = line


class PipelineError(FastGAError):
    """Error in pipeline processing"""

    def __init__(self, message: str, stage: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if stage is not None:
            details.setdefault('stage', stage)
        super().__init__(message, details)
        self.stage = stage


class ProcessError(PipelineError):
    """External process exited with a non-zero status"""

    def __init__(self, message: str, stage: Optional[str] = None,
                 exit_code: Optional[int] = None, stderr: str = "",
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault('exit_code', exit_code)
        if stderr:
            details.setdefault('stderr', stderr)
        super().__init__(message, stage, details)
        self.exit_code = exit_code
        self.stderr = stderr


class StageTimeoutError(PipelineError, TimeoutError):
    """A stage exceeded its wall-clock deadline and was killed"""

    def __init__(self, message: str, stage: Optional[str] = None,
                 timeout: Optional[float] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if timeout is not None:
            details.setdefault('timeout', timeout)
        super().__init__(message, stage, details)
        self.timeout = timeout


class StreamCancelledError(PipelineError):
    """Alignment stream was cancelled before it was exhausted"""
    pass
