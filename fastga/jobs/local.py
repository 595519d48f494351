#!/usr/bin/env python3
"""
Local process runner for the FastGA pipeline.
Runs each stage as an isolated child process on the local machine.
"""
import os
import shlex
import signal
import subprocess
import logging
import tempfile
import threading
import time
from typing import BinaryIO, List, Optional, Set

from fastga.exceptions import (
    ProcessError, StageTimeoutError, StreamCancelledError
)
from .base import ProcessRunner, StageOutput, StreamingProcess

logger = logging.getLogger("fastga.jobs.local")

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERMINATE_GRACE = 0.5


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    """Signal the child's whole process group (children start in their own session)"""
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.send_signal(sig)


def terminate_process(process: subprocess.Popen, grace: float = TERMINATE_GRACE) -> bool:
    """Terminate a child, killing it if it ignores SIGTERM

    Returns:
        True if the process was still running when called
    """
    if process.poll() is not None:
        return False

    _signal_group(process, signal.SIGTERM)

    # Give it a moment to terminate
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if process.poll() is not None:
            break
        time.sleep(0.05)

    # Force kill if still running
    if process.poll() is None:
        _signal_group(process, signal.SIGKILL)
        process.wait()
    return True


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    return data


class LocalStreamingProcess(StreamingProcess):
    """Child process with a stdout pipe and an optional watchdog timer

    stderr goes to an anonymous temporary file so a chatty child can never
    block on a full stderr pipe while the caller drains stdout.
    """

    def __init__(self, runner: 'LocalProcessRunner', stage: str, command: List[str],
                 cwd: Optional[str], timeout: Optional[float]):
        self.runner = runner
        self.stage = stage
        self.command = command
        self.timeout = timeout
        self.timed_out = False
        self._finished: Optional[StageOutput] = None
        self._start = time.monotonic()
        self._stderr_file = tempfile.TemporaryFile(dir=cwd)

        try:
            self.process = subprocess.Popen(
                command, cwd=cwd, stdout=subprocess.PIPE, stderr=self._stderr_file,
                stdin=subprocess.DEVNULL, env=runner.env, shell=False,
                start_new_session=True)
        except OSError as e:
            self._stderr_file.close()
            raise ProcessError(f"Failed to start {stage}: {str(e)}", stage=stage,
                               details={'command': command}) from e

        self._watchdog = None
        if timeout is not None:
            self._watchdog = threading.Timer(timeout, self._on_timeout)
            self._watchdog.daemon = True
            self._watchdog.start()

    def _on_timeout(self) -> None:
        if self.process.poll() is None:
            self.timed_out = True
            logger.error(f"Stage {self.stage} exceeded {self.timeout}s, killing pid {self.process.pid}")
            terminate_process(self.process)

    @property
    def stdout(self) -> BinaryIO:
        return self.process.stdout

    @property
    def pid(self) -> int:
        return self.process.pid

    def terminate(self) -> None:
        terminate_process(self.process)

    def finish(self) -> StageOutput:
        if self._finished is not None:
            return self._finished
        try:
            returncode = self.process.wait()
        finally:
            if self._watchdog is not None:
                self._watchdog.cancel()
            if self.process.stdout is not None:
                self.process.stdout.close()
            self.runner._forget(self.process)

        self._stderr_file.seek(0)
        stderr = _decode(self._stderr_file.read())
        self._stderr_file.close()
        duration = time.monotonic() - self._start

        if self.timed_out:
            raise StageTimeoutError(f"Stage {self.stage} timed out after {self.timeout}s",
                                    stage=self.stage, timeout=self.timeout)
        if self.runner.cancelled:
            raise StreamCancelledError(f"Stage {self.stage} was cancelled", stage=self.stage)
        if returncode != 0:
            raise ProcessError(f"Stage {self.stage} failed with exit code {returncode}",
                               stage=self.stage, exit_code=returncode, stderr=stderr.strip())

        self._finished = StageOutput(self.stage, self.command, returncode, "", stderr, duration)
        return self._finished


class LocalProcessRunner(ProcessRunner):
    """Runs pipeline stages as local child processes

    One runner serves one pipeline invocation; cancel() terminates whatever
    child that invocation has in flight.
    """

    def __init__(self, env: Optional[dict] = None):
        self.env = env
        self.cancelled = False
        self._lock = threading.Lock()
        self._active: Set[subprocess.Popen] = set()

    def _track(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._active.add(process)
            cancelled = self.cancelled
        if cancelled:
            terminate_process(process)

    def _forget(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._active.discard(process)

    def run_stage(self, stage: str, command: List[str], cwd: Optional[str] = None,
                  timeout: Optional[float] = None) -> StageOutput:
        if self.cancelled:
            raise StreamCancelledError(f"Stage {stage} not started: run was cancelled", stage=stage)

        logger.debug(f"Running {stage}: {' '.join(shlex.quote(c) for c in command)}")
        start = time.monotonic()
        try:
            process = subprocess.Popen(
                command, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL, env=self.env, shell=False,
                start_new_session=True)
        except OSError as e:
            raise ProcessError(f"Failed to start {stage}: {str(e)}", stage=stage,
                               details={'command': command}) from e

        self._track(process)
        try:
            try:
                stdout, stderr = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.error(f"Stage {stage} exceeded {timeout}s, killing pid {process.pid}")
                terminate_process(process)
                process.communicate()
                raise StageTimeoutError(f"Stage {stage} timed out after {timeout}s",
                                        stage=stage, timeout=timeout)
        finally:
            if process.poll() is None:
                terminate_process(process)
            self._forget(process)

        if self.cancelled:
            raise StreamCancelledError(f"Stage {stage} was cancelled", stage=stage)

        stderr_text = _decode(stderr)
        if process.returncode != 0:
            raise ProcessError(f"Stage {stage} failed with exit code {process.returncode}",
                               stage=stage, exit_code=process.returncode,
                               stderr=stderr_text.strip())

        duration = time.monotonic() - start
        logger.debug(f"Stage {stage} finished in {duration:.2f}s")
        return StageOutput(stage, command, process.returncode, _decode(stdout), stderr_text, duration)

    def spawn_stream(self, stage: str, command: List[str], cwd: Optional[str] = None,
                     timeout: Optional[float] = None) -> LocalStreamingProcess:
        if self.cancelled:
            raise StreamCancelledError(f"Stage {stage} not started: run was cancelled", stage=stage)

        logger.debug(f"Spawning {stage}: {' '.join(shlex.quote(c) for c in command)}")
        streaming = LocalStreamingProcess(self, stage, command, cwd, timeout)
        self._track(streaming.process)
        return streaming

    def cancel(self) -> bool:
        with self._lock:
            self.cancelled = True
            active = list(self._active)

        terminated = False
        for process in active:
            if terminate_process(process):
                logger.info(f"Terminated pid {process.pid}")
                terminated = True
        return terminated
