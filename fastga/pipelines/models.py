#!/usr/bin/env python3
"""
Models for pipeline orchestration
"""
import os
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastga.exceptions import ConfigurationError, PipelineError, StreamCancelledError


class PipelineState(Enum):
    """Pipeline states in execution order"""
    VALIDATING = "validating"
    PREPARING_QUERY_DB = "preparing_query_db"
    PREPARING_TARGET_DB = "preparing_target_db"
    INDEXING = "indexing"
    ALIGNING = "aligning"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_in_flight(self) -> bool:
        return self in IN_FLIGHT_STATES


TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED, PipelineState.TIMED_OUT})

# States in which an external process may be running
IN_FLIGHT_STATES = frozenset({
    PipelineState.PREPARING_QUERY_DB,
    PipelineState.PREPARING_TARGET_DB,
    PipelineState.INDEXING,
    PipelineState.ALIGNING,
})

STAGE_ORDER = [
    PipelineState.VALIDATING,
    PipelineState.PREPARING_QUERY_DB,
    PipelineState.PREPARING_TARGET_DB,
    PipelineState.INDEXING,
    PipelineState.ALIGNING,
    PipelineState.DONE,
]


class OutputFormat(Enum):
    """Aligner output formats"""
    PAFX = "pafx"        # PAF, CIGAR with =/X
    PAFM = "pafm"        # PAF, CIGAR with M
    PAFS = "pafs"        # PAF, short CS string
    PAF_LONG = "pafS"    # PAF, long CS string
    PSL = "psl"

    @property
    def flag(self) -> str:
        return f"-{self.value}"

    @property
    def is_paf(self) -> bool:
        return self is not OutputFormat.PSL

    @classmethod
    def parse(cls, value) -> 'OutputFormat':
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ConfigurationError(f"Invalid output format {value!r}; expected one of {valid}")


def default_threads() -> int:
    return max(os.cpu_count() or 1, 1)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration for one or more pipeline invocations"""
    threads: int = field(default_factory=default_threads)
    min_length: int = 100
    min_identity: Optional[float] = None
    soft_masking: bool = True
    output_format: OutputFormat = OutputFormat.PAFX
    frequency: int = 10
    adaptive_seed_cutoff: Optional[int] = None
    min_chain_coverage: Optional[float] = None
    chain_start_threshold: Optional[int] = None
    symmetric_seeding: bool = False
    verbose: bool = False
    keep_intermediates: bool = False
    temp_dir: Optional[str] = None
    log_file: Optional[str] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'output_format', OutputFormat.parse(self.output_format))

        if self.threads is None or self.threads < 1:
            raise ConfigurationError(f"threads must be at least 1, got {self.threads}")
        if self.min_length < 0:
            raise ConfigurationError(f"min_length must be non-negative, got {self.min_length}")
        if self.min_identity is not None and not 0.0 < self.min_identity <= 1.0:
            raise ConfigurationError(f"min_identity must be in (0, 1], got {self.min_identity}")
        if self.frequency < 1:
            raise ConfigurationError(f"frequency must be at least 1, got {self.frequency}")
        if self.min_chain_coverage is not None and not 0.0 <= self.min_chain_coverage <= 1.0:
            raise ConfigurationError(
                f"min_chain_coverage must be in [0, 1], got {self.min_chain_coverage}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def high_sensitivity(cls, **overrides) -> 'PipelineConfig':
        """Shorter minimum length for divergent sequences"""
        return cls(**{'min_length': 50, **overrides})

    @classmethod
    def fast(cls, **overrides) -> 'PipelineConfig':
        """Longer, higher-identity alignments for closely related genomes"""
        return cls(**{'min_length': 200, 'min_identity': 0.9, 'frequency': 20, **overrides})

    @classmethod
    def repetitive_genomes(cls, **overrides) -> 'PipelineConfig':
        """Higher k-mer frequency cutoff to ignore common repeats"""
        return cls(**{'frequency': 50, **overrides})

    @classmethod
    def from_config(cls, config_manager) -> 'PipelineConfig':
        """Build from the `pipeline` section of a ConfigManager

        Raises:
            ConfigurationError: If a value is out of range
        """
        section = config_manager.get_section('pipeline')
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in section.items() if k in known and v is not None}
        return cls(**values)

    def with_changes(self, **changes) -> 'PipelineConfig':
        return replace(self, **changes)

    def aligner_flags(self) -> List[str]:
        """FastGA option flags, excluding the temp dir and inputs"""
        flags = [self.output_format.flag, f"-T{self.threads}"]
        if self.min_length > 0:
            flags.append(f"-l{self.min_length}")
        if self.min_identity is not None:
            flags.append(f"-i{self.min_identity:.2f}")
        if self.adaptive_seed_cutoff is not None:
            flags.append(f"-f{self.adaptive_seed_cutoff}")
        if self.min_chain_coverage is not None:
            # -c takes an integer percentage
            flags.append(f"-c{int(self.min_chain_coverage * 100)}")
        if self.chain_start_threshold is not None:
            flags.append(f"-s{self.chain_start_threshold}")
        if self.verbose:
            flags.append("-v")
        if self.keep_intermediates:
            flags.append("-k")
        if self.soft_masking:
            flags.append("-M")
        if self.symmetric_seeding:
            flags.append("-S")
        if self.log_file:
            flags.append(f"-L:{self.log_file}")
        return flags


@dataclass
class StageResult:
    """Result from executing a pipeline stage"""
    stage: PipelineState
    success: bool
    start_time: datetime
    end_time: Optional[datetime] = None
    commands: List[List[str]] = field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        if not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def finalize(self, success: bool = True, error: Optional[str] = None):
        """Mark stage as complete"""
        self.end_time = datetime.now()
        self.success = success
        if error:
            self.error = error


@dataclass
class PipelineRun:
    """Represents one pipeline invocation and its state history"""
    query_path: str
    target_path: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    state: PipelineState = PipelineState.VALIDATING
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.VALIDATING])
    stages: List[StageResult] = field(default_factory=list)
    failed_stage: Optional[PipelineState] = None
    error: Optional[BaseException] = None
    malformed_lines: int = 0
    records_emitted: int = 0
    work_dir: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.state.is_terminal

    @property
    def success(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, StreamCancelledError)

    @property
    def duration(self) -> float:
        if not self.end_time:
            return (datetime.now() - self.start_time).total_seconds()
        return (self.end_time - self.start_time).total_seconds()

    @property
    def current_stage(self) -> Optional[StageResult]:
        """Get the currently executing stage"""
        for stage in self.stages:
            if not stage.end_time:
                return stage
        return None

    def transition(self, state: PipelineState) -> None:
        """Advance to the next state of the sequence

        Raises:
            PipelineError: On an out-of-order transition
        """
        if self.state.is_terminal:
            raise PipelineError(f"Run {self.run_id} already finished in state {self.state.value}")
        if state in (PipelineState.FAILED, PipelineState.TIMED_OUT):
            raise PipelineError("Use fail() or time_out() for terminal failure states")
        expected = STAGE_ORDER[STAGE_ORDER.index(self.state) + 1]
        if state is not expected:
            raise PipelineError(f"Invalid transition {self.state.value} -> {state.value}",
                                stage=self.state.value)
        self.state = state
        self.history.append(state)
        if state is PipelineState.DONE:
            self.end_time = datetime.now()

    def begin_stage(self, state: PipelineState) -> StageResult:
        """Transition to an in-flight state and open its StageResult"""
        self.transition(state)
        result = StageResult(stage=state, success=False, start_time=datetime.now())
        self.stages.append(result)
        return result

    def fail(self, error: BaseException) -> None:
        """Failed(stage, cause), reachable from any non-terminal state"""
        if self.state.is_terminal:
            return
        self.failed_stage = self.state
        self.error = error
        self._close_open_stage(str(error))
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)
        self.end_time = datetime.now()

    def time_out(self, error: BaseException) -> None:
        """TimedOut(stage), reachable only from in-flight states"""
        if self.state.is_terminal:
            return
        if not self.state.is_in_flight:
            self.fail(error)
            return
        self.failed_stage = self.state
        self.error = error
        self._close_open_stage(str(error))
        self.state = PipelineState.TIMED_OUT
        self.history.append(PipelineState.TIMED_OUT)
        self.end_time = datetime.now()

    def _close_open_stage(self, message: str) -> None:
        stage = self.current_stage
        if stage is not None:
            stage.finalize(success=False, error=message)

    def get_summary(self) -> Dict[str, Any]:
        """Get run summary"""
        return {
            'run_id': self.run_id,
            'query': self.query_path,
            'target': self.target_path,
            'state': self.state.value,
            'duration': self.duration,
            'success': self.success,
            'failed_stage': self.failed_stage.value if self.failed_stage else None,
            'error': str(self.error) if self.error else None,
            'stages_completed': len([s for s in self.stages if s.success]),
            'records_emitted': self.records_emitted,
            'malformed_lines': self.malformed_lines,
            'work_dir': self.work_dir,
        }
