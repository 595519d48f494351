#!/usr/bin/env python3
"""
Process pipeline driver

Turns a query and a target FASTA file into alignment records by running
FAtoGDB, GIXmake and FastGA as separate child processes inside a private
work directory. The aligner is never called in-process.
"""
import os
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from fastga.exceptions import (
    FastGAError, PipelineError, StageTimeoutError,
    StreamCancelledError, ValidationError
)
from fastga.error_handlers import log_exception
from fastga.io.aln import open_for_write
from fastga.io.paf import PafRecordReader
from fastga.jobs.base import ProcessRunner, StreamingProcess
from fastga.jobs.local import LocalProcessRunner
from fastga.models.alignment import AlignmentRecord, QueryAlignmentSet
from fastga.models.catalog import SequenceCatalog
from fastga.pipelines.models import PipelineConfig, PipelineRun, PipelineState
from fastga.pipelines.streaming import QueryAlignmentIterator
from fastga.utils.binaries import find_all_binaries
from fastga.utils.fasta import catalog_from_fasta
from fastga.utils.file import (
    atomic_write, check_input_file, ensure_dir, link_or_copy, make_work_dir,
    remove_dir, sequence_suffix
)

logger = logging.getLogger("fastga.pipelines.driver")

ProgressCallback = Callable[[str, str], None]

ALN_SUFFIX = ".1aln"
COPY_CHUNK = 1 << 16


class AlignmentOutputStream:
    """Records streamed from a running aligner

    Iterating parses the aligner's stdout into AlignmentRecords. When the
    stream ends the child's exit status is checked and the run is marked
    done or failed. The work directory is removed once the stream is
    finished or closed, unless intermediates are kept.
    """

    def __init__(self, pipeline: 'AlignmentPipeline', pipeline_run: PipelineRun,
                 runner: ProcessRunner, process: StreamingProcess, work_dir: str,
                 query_catalog: Optional[SequenceCatalog],
                 target_catalog: Optional[SequenceCatalog]):
        self.pipeline = pipeline
        self.run = pipeline_run
        self.runner = runner
        self.process = process
        self.work_dir = work_dir
        self.query_catalog = query_catalog
        self.target_catalog = target_catalog
        self._reader = None
        if query_catalog is not None and target_catalog is not None:
            self._reader = PafRecordReader(process.stdout, query_catalog, target_catalog)
        self._lock = threading.Lock()
        self._started = False
        self._finalized = False
        self._cancel_requested = False

    @property
    def command(self) -> List[str]:
        return self.process.command

    @property
    def malformed_count(self) -> int:
        return self._reader.malformed_count if self._reader else 0

    @property
    def errors(self):
        return list(self._reader.errors) if self._reader else []

    def _start(self) -> None:
        with self._lock:
            if self._started:
                raise PipelineError("Alignment stream can only be consumed once",
                                    stage=PipelineState.ALIGNING.value)
            if self._finalized:
                raise StreamCancelledError("Alignment stream was closed",
                                           stage=PipelineState.ALIGNING.value)
            self._started = True

    def __iter__(self) -> Iterator[AlignmentRecord]:
        if self._reader is None:
            raise ValidationError("Stream has no catalogs; only raw copying is possible")
        self._start()
        return self._records()

    def _records(self) -> Iterator[AlignmentRecord]:
        completed = False
        try:
            try:
                for record in self._reader:
                    self.run.records_emitted += 1
                    yield record
            except (OSError, ValueError) as e:
                if self._cancel_requested:
                    raise StreamCancelledError("Alignment stream was closed",
                                               stage=PipelineState.ALIGNING.value) from e
                raise
            completed = True
        finally:
            self._finish(completed)

    def copy_to(self, handle) -> int:
        """Copy the aligner's raw output to a binary handle

        Returns:
            Number of bytes copied
        """
        self._start()
        completed = False
        copied = 0
        try:
            while True:
                chunk = self.process.stdout.read(COPY_CHUNK)
                if not chunk:
                    break
                handle.write(chunk)
                copied += len(chunk)
            completed = True
        finally:
            self._finish(completed)
        return copied

    def _finish(self, completed: bool) -> None:
        """Reap the child and settle the run; raises only for a fully read stream"""
        with self._lock:
            if self._finalized:
                return
            self._finalized = True

        try:
            if not completed:
                self.runner.cancel()
            try:
                self.process.finish()
            except StageTimeoutError as e:
                self.run.time_out(e)
                log_exception(logger, e)
                if completed:
                    raise
            except FastGAError as e:
                self.run.fail(e)
                if isinstance(e, StreamCancelledError):
                    logger.info(f"Run {self.run.run_id} cancelled during alignment")
                else:
                    log_exception(logger, e)
                if completed:
                    raise
            else:
                if not completed:
                    error = StreamCancelledError("Alignment stream closed before exhaustion",
                                                 stage=PipelineState.ALIGNING.value)
                    self.run.fail(error)
                else:
                    self.run.malformed_lines = self.malformed_count
                    self.run.current_stage.finalize(success=True)
                    self.run.transition(PipelineState.DONE)
                    self.pipeline._report(PipelineState.DONE,
                                          f"{self.run.records_emitted} records, "
                                          f"{self.run.malformed_lines} malformed lines skipped")
        finally:
            self.run.malformed_lines = self.malformed_count
            self.pipeline._cleanup(self.run, self.work_dir)

    def close(self) -> None:
        """Terminate the aligner if it is still running and release the work directory"""
        with self._lock:
            if self._finalized:
                return
            self._cancel_requested = True
        self.runner.cancel()
        self._finish(False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class AlignmentPipeline:
    """Drives the FastGA tool chain for pairs of input files

    Each call to run() is one invocation with its own work directory and
    process runner; several invocations may proceed concurrently from
    different threads.
    """

    def __init__(self, config: Optional[PipelineConfig] = None,
                 tools_config: Optional[Dict[str, Any]] = None,
                 progress: Optional[ProgressCallback] = None,
                 runner_factory: Callable[[], ProcessRunner] = LocalProcessRunner,
                 buffer_depth: int = 1):
        """Initialize the pipeline

        Args:
            config: Pipeline configuration (defaults when None)
            tools_config: The `tools` configuration section locating binaries
            progress: Optional callback receiving (stage, message)
            runner_factory: Creates the process runner for each invocation
            buffer_depth: Default queue depth for align_queries
        """
        self.config = config or PipelineConfig()
        self.tools_config = tools_config or {}
        self.progress = progress
        self.runner_factory = runner_factory
        self.buffer_depth = buffer_depth
        self._lock = threading.Lock()
        self._active_runner: Optional[ProcessRunner] = None
        self.last_run: Optional[PipelineRun] = None

    @classmethod
    def from_config(cls, config_manager, progress: Optional[ProgressCallback] = None) -> 'AlignmentPipeline':
        """Build from a ConfigManager's pipeline, tools and streaming sections"""
        return cls(PipelineConfig.from_config(config_manager),
                   tools_config=config_manager.get_tools_config(),
                   progress=progress,
                   buffer_depth=config_manager.get('streaming.buffer_depth', 1) or 1)

    # Helpers

    def _report(self, state: PipelineState, message: str) -> None:
        logger.info(f"[{state.value}] {message}")
        if self.progress is None:
            return
        try:
            self.progress(state.value, message)
        except Exception as e:
            logger.warning(f"Progress callback raised {e.__class__.__name__}: {e}")

    def _cleanup(self, pipeline_run: PipelineRun, work_dir: Optional[str]) -> None:
        if not work_dir:
            return
        if self.config.keep_intermediates:
            pipeline_run.work_dir = work_dir
            logger.info(f"Keeping intermediate files in {work_dir}")
        else:
            remove_dir(work_dir)

    def _run_stage(self, runner: ProcessRunner, pipeline_run: PipelineRun,
                   state: PipelineState, commands: List[List[str]],
                   work_dir: str, expected_outputs: List[str]) -> None:
        stage = pipeline_run.begin_stage(state)
        stage.commands = commands
        for command in commands:
            self._report(state, f"Running {os.path.basename(command[0])}")
            output = runner.run_stage(state.value, command, cwd=work_dir,
                                      timeout=self.config.timeout)
            stage.exit_code = output.exit_code
        for path in expected_outputs:
            if not os.path.exists(path):
                raise PipelineError(f"{state.value} did not produce {os.path.basename(path)}",
                                    stage=state.value, details={'path': path})
        stage.finalize(success=True)

    # Invocation

    def _start(self, query_path: str, target_path: str,
               need_catalogs: bool) -> AlignmentOutputStream:
        pipeline_run = PipelineRun(query_path=str(query_path), target_path=str(target_path))
        runner = self.runner_factory()
        with self._lock:
            self._active_runner = runner
            self.last_run = pipeline_run

        work_dir = None
        config = self.config
        try:
            self._report(PipelineState.VALIDATING, f"{query_path} vs {target_path}")
            query = check_input_file(query_path, "query")
            target = check_input_file(target_path, "target")
            binaries = find_all_binaries(self.tools_config)

            query_catalog = target_catalog = None
            if need_catalogs:
                query_catalog = catalog_from_fasta(query)
                target_catalog = catalog_from_fasta(target)

            work_dir = make_work_dir(config.temp_dir, prefix=f"fastga_{pipeline_run.run_id[:8]}_")
            scratch = os.path.join(work_dir, "tmp")
            ensure_dir(scratch)
            staged_query = link_or_copy(query, os.path.join(work_dir, "query" + sequence_suffix(query)))
            staged_target = link_or_copy(target, os.path.join(work_dir, "target" + sequence_suffix(target)))
            query_db = os.path.join(work_dir, "query.1gdb")
            target_db = os.path.join(work_dir, "target.1gdb")

            self._run_stage(runner, pipeline_run, PipelineState.PREPARING_QUERY_DB,
                            [[binaries['FAtoGDB'], staged_query]], work_dir, [query_db])
            self._run_stage(runner, pipeline_run, PipelineState.PREPARING_TARGET_DB,
                            [[binaries['FAtoGDB'], staged_target]], work_dir, [target_db])

            index_flags = [f"-T{config.threads}", f"-P{scratch}", f"-f{config.frequency}"]
            self._run_stage(runner, pipeline_run, PipelineState.INDEXING,
                            [[binaries['GIXmake']] + index_flags + [query_db],
                             [binaries['GIXmake']] + index_flags + [target_db]],
                            work_dir,
                            [os.path.join(work_dir, "query.gix"), os.path.join(work_dir, "target.gix")])

            command = [binaries['FastGA']] + config.aligner_flags() + [f"-P{scratch}", query_db, target_db]
            stage = pipeline_run.begin_stage(PipelineState.ALIGNING)
            stage.commands = [command]
            self._report(PipelineState.ALIGNING, "Running FastGA")
            process = runner.spawn_stream(PipelineState.ALIGNING.value, command,
                                          cwd=work_dir, timeout=config.timeout)
        except StageTimeoutError as e:
            pipeline_run.time_out(e)
            log_exception(logger, e)
            self._cleanup(pipeline_run, work_dir)
            raise
        except FastGAError as e:
            pipeline_run.fail(e)
            if isinstance(e, StreamCancelledError):
                logger.info(f"Run {pipeline_run.run_id} cancelled in {pipeline_run.failed_stage.value}")
            else:
                log_exception(logger, e)
            self._cleanup(pipeline_run, work_dir)
            raise
        except Exception as e:
            error = PipelineError(f"Unexpected error in {pipeline_run.state.value}: {str(e)}",
                                  stage=pipeline_run.state.value)
            pipeline_run.fail(error)
            log_exception(logger, e, exc_info=True)
            self._cleanup(pipeline_run, work_dir)
            raise error from e

        return AlignmentOutputStream(self, pipeline_run, runner, process, work_dir,
                                     query_catalog, target_catalog)

    def run(self, query_path: str, target_path: str) -> AlignmentOutputStream:
        """Prepare both databases and start the aligner

        Args:
            query_path: Query FASTA file
            target_path: Target FASTA file

        Returns:
            AlignmentOutputStream yielding records as the aligner emits them

        Raises:
            ValidationError: Bad inputs, missing binaries or a non-PAF output format
            ProcessError: A preparation stage exited non-zero
            StageTimeoutError: A preparation stage exceeded the timeout
        """
        if not self.config.output_format.is_paf:
            raise ValidationError(f"Output format {self.config.output_format.value} cannot be "
                                  f"parsed into records; use run_to_file")
        return self._start(query_path, target_path, need_catalogs=True)

    def align(self, query_path: str, target_path: str) -> List[AlignmentRecord]:
        """Run the pipeline and collect every record"""
        with self.run(query_path, target_path) as stream:
            return list(stream)

    def run_to_file(self, query_path: str, target_path: str, output_path: str) -> PipelineRun:
        """Run the pipeline writing its output to a file

        A path ending in .1aln gets a binary container with embedded
        catalogs; any other path receives the aligner's raw output.

        Returns:
            The finished PipelineRun
        """
        output_path = str(output_path)
        ensure_dir(os.path.dirname(os.path.abspath(output_path)))

        if output_path.endswith(ALN_SUFFIX):
            if not self.config.output_format.is_paf:
                raise ValidationError(f"{ALN_SUFFIX} output requires a PAF output format")
            stream = self.run(query_path, target_path)
            try:
                with open_for_write(output_path, stream.query_catalog, stream.target_catalog,
                                    provenance={'command': " ".join(stream.command)}) as writer:
                    for record in stream:
                        writer.write_record(record)
            except BaseException:
                stream.close()
                if os.path.exists(output_path):
                    os.unlink(output_path)
                raise
        else:
            stream = self._start(query_path, target_path, need_catalogs=False)
            try:
                with atomic_write(output_path, 'wb') as handle:
                    copied = stream.copy_to(handle)
                logger.debug(f"Copied {copied} bytes of aligner output to {output_path}")
            except BaseException:
                stream.close()
                raise

        logger.info(f"Wrote alignment output to {output_path}")
        return stream.run

    def align_queries(self, query_path: str, target_path: str,
                      processor: Callable[[QueryAlignmentSet], Optional[bool]],
                      buffer_depth: Optional[int] = None) -> PipelineRun:
        """Stream query-complete sets to a processor

        The processor returns False to stop early, which terminates the
        aligner. Any other return value continues.

        Returns:
            The PipelineRun; a run stopped by the processor ends in FAILED
            with a StreamCancelledError cause
        """
        stream = self.run(query_path, target_path)
        iterator = QueryAlignmentIterator(stream, buffer_depth=buffer_depth or self.buffer_depth)
        try:
            for query_set in iterator:
                if processor(query_set) is False:
                    logger.info(f"Processor stopped the stream at query {query_set.query_name}")
                    break
        finally:
            iterator.close()
            stream.close()
        return stream.run

    def cancel(self) -> bool:
        """Terminate the child process of the most recent invocation

        Returns:
            True if a running child was terminated
        """
        with self._lock:
            runner = self._active_runner
        if runner is None:
            return False
        return runner.cancel()


def run(query_path: str, target_path: str, config: Optional[PipelineConfig] = None,
        progress: Optional[ProgressCallback] = None,
        tools_config: Optional[Dict[str, Any]] = None) -> AlignmentOutputStream:
    """Run the pipeline once and return its output stream"""
    return AlignmentPipeline(config, tools_config=tools_config, progress=progress).run(
        query_path, target_path)


def align_queries(query_path: str, target_path: str, config: Optional[PipelineConfig],
                  processor: Callable[[QueryAlignmentSet], Optional[bool]],
                  buffer_depth: int = 1, progress: Optional[ProgressCallback] = None,
                  tools_config: Optional[Dict[str, Any]] = None) -> PipelineRun:
    """Stream query-complete sets from one pipeline run to a processor"""
    return AlignmentPipeline(config, tools_config=tools_config, progress=progress).align_queries(
        query_path, target_path, processor, buffer_depth=buffer_depth)
