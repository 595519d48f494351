#!/usr/bin/env python3
"""
Base process-runner interfaces for the FastGA pipeline.
"""
import abc
from dataclasses import dataclass
from typing import BinaryIO, List, Optional


@dataclass
class StageOutput:
    """Captured result of a stage that ran to completion"""
    stage: str
    command: List[str]
    exit_code: int
    stdout: str
    stderr: str
    duration: float


class StreamingProcess(abc.ABC):
    """A running child process whose stdout is consumed incrementally"""

    stage: str
    command: List[str]

    @property
    @abc.abstractmethod
    def stdout(self) -> BinaryIO:
        """Binary stdout of the child"""
        pass

    @abc.abstractmethod
    def finish(self) -> StageOutput:
        """Wait for exit and check the outcome

        Raises:
            StageTimeoutError: If the watchdog killed the child
            StreamCancelledError: If the child was cancelled
            ProcessError: If the child exited non-zero
        """
        pass

    @abc.abstractmethod
    def terminate(self) -> None:
        """Stop the child, escalating to kill"""
        pass


class ProcessRunner(abc.ABC):
    """Base interface for running external pipeline stages"""

    @abc.abstractmethod
    def run_stage(self, stage: str, command: List[str], cwd: Optional[str] = None,
                  timeout: Optional[float] = None) -> StageOutput:
        """Run a command to completion

        Args:
            stage: Stage name used in errors and logs
            command: Argument vector
            cwd: Working directory
            timeout: Wall-clock limit in seconds, None for no limit

        Returns:
            StageOutput of the finished process
        """
        pass

    @abc.abstractmethod
    def spawn_stream(self, stage: str, command: List[str], cwd: Optional[str] = None,
                     timeout: Optional[float] = None) -> StreamingProcess:
        """Start a command whose stdout the caller reads incrementally"""
        pass

    @abc.abstractmethod
    def cancel(self) -> bool:
        """Terminate whatever child is in flight

        Returns:
            True if a running child was terminated
        """
        pass
