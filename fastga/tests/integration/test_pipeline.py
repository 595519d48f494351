#!/usr/bin/env python3
"""
Integration tests for the process pipeline against a fake FastGA toolchain
"""
import os
import threading
import time

import pytest

from fastga.exceptions import (
    PipelineError, ProcessError, StageTimeoutError, StreamCancelledError, ValidationError
)
from fastga.config import ConfigManager
from fastga.io.aln import open_for_read
from fastga.pipelines import (
    AlignmentPipeline, PipelineState, align_queries, run
)
from fastga.pipelines.models import STAGE_ORDER
from fastga.tests.conftest import DEFAULT_PAF_LINES


@pytest.fixture
def pipeline(pipeline_config, toolchain):
    return AlignmentPipeline(pipeline_config, tools_config=toolchain.tools_config)


def assert_cleaned(work_parent):
    assert os.listdir(work_parent) == []


class TestSuccessfulRun:
    """Test a run through every stage"""

    def test_records_and_history(self, pipeline, query_fasta, target_fasta, work_parent):
        with pipeline.run(str(query_fasta), str(target_fasta)) as stream:
            records = list(stream)

        assert [r.query_id for r in records] == [0, 0, 1, 2]
        assert [r.target_id for r in records] == [0, 1, 0, 1]
        assert records[0].identity == pytest.approx(0.975)
        assert records[2].query_len == 800

        pipeline_run = stream.run
        assert pipeline_run.success
        assert pipeline_run.history == STAGE_ORDER
        assert pipeline_run.records_emitted == 4
        assert [s.stage for s in pipeline_run.stages] == STAGE_ORDER[1:-1]
        assert all(s.success for s in pipeline_run.stages)
        assert_cleaned(work_parent)

    def test_aligner_arguments(self, pipeline, toolchain, query_fasta, target_fasta):
        pipeline.align(str(query_fasta), str(target_fasta))

        args = toolchain.aligner_args()
        assert args[0] == "-pafx"
        assert "-T2" in args
        assert "-M" in args
        scratch = [a for a in args if a.startswith("-P")]
        assert len(scratch) == 1 and scratch[0].endswith(os.sep + "tmp")
        assert os.path.basename(args[-2]) == "query.1gdb"
        assert os.path.basename(args[-1]) == "target.1gdb"

    def test_progress_callback(self, pipeline_config, toolchain, query_fasta, target_fasta):
        events = []
        pipeline = AlignmentPipeline(pipeline_config, tools_config=toolchain.tools_config,
                                     progress=lambda stage, message: events.append(stage))

        pipeline.align(str(query_fasta), str(target_fasta))

        assert events[0] == "validating"
        assert events[-1] == "done"
        assert events.count("indexing") == 2
        assert "aligning" in events

    def test_failing_progress_callback_is_ignored(self, pipeline_config, toolchain,
                                                  query_fasta, target_fasta, caplog):
        def broken(stage, message):
            raise RuntimeError("display went away")

        pipeline = AlignmentPipeline(pipeline_config, tools_config=toolchain.tools_config,
                                     progress=broken)

        assert len(pipeline.align(str(query_fasta), str(target_fasta))) == 4
        assert "Progress callback raised RuntimeError" in caplog.text

    def test_malformed_lines_are_counted(self, pipeline, toolchain, query_fasta, target_fasta):
        toolchain.set_output(DEFAULT_PAF_LINES[:2] + ["not\ta\tpaf\tline"] + DEFAULT_PAF_LINES[2:])

        with pipeline.run(str(query_fasta), str(target_fasta)) as stream:
            records = list(stream)

        assert len(records) == 4
        assert stream.run.malformed_lines == 1
        assert stream.run.success

    def test_empty_output(self, pipeline, toolchain, query_fasta, target_fasta):
        toolchain.set_output([])
        assert pipeline.align(str(query_fasta), str(target_fasta)) == []
        assert pipeline.last_run.success

    def test_keep_intermediates(self, pipeline_config, toolchain, query_fasta, target_fasta):
        config = pipeline_config.with_changes(keep_intermediates=True)
        pipeline = AlignmentPipeline(config, tools_config=toolchain.tools_config)

        pipeline.align(str(query_fasta), str(target_fasta))

        work_dir = pipeline.last_run.work_dir
        assert work_dir is not None
        assert os.path.exists(os.path.join(work_dir, "query.1gdb"))
        assert os.path.exists(os.path.join(work_dir, "target.gix"))
        assert "-k" in toolchain.aligner_args()

    def test_module_level_run(self, pipeline_config, toolchain, query_fasta, target_fasta):
        with run(str(query_fasta), str(target_fasta), pipeline_config,
                 tools_config=toolchain.tools_config) as stream:
            assert len(list(stream)) == 4

    def test_stream_consumed_once(self, pipeline, query_fasta, target_fasta):
        with pipeline.run(str(query_fasta), str(target_fasta)) as stream:
            list(stream)
            with pytest.raises(PipelineError):
                list(stream)


class TestFailures:
    """Test failing, timed-out and invalid runs"""

    def test_stage_failure(self, pipeline, toolchain, query_fasta, target_fasta, work_parent):
        toolchain.replace("FAtoGDB", "echo 'bad sequence' >&2\nexit 2\n")

        with pytest.raises(ProcessError) as excinfo:
            pipeline.run(str(query_fasta), str(target_fasta))

        assert excinfo.value.stderr == "bad sequence"
        assert excinfo.value.exit_code == 2
        pipeline_run = pipeline.last_run
        assert pipeline_run.state is PipelineState.FAILED
        assert pipeline_run.failed_stage is PipelineState.PREPARING_QUERY_DB
        assert pipeline_run.error is excinfo.value
        assert_cleaned(work_parent)

    def test_missing_database_output(self, pipeline, toolchain, query_fasta, target_fasta):
        toolchain.replace("GIXmake", "exit 0\n")

        with pytest.raises(PipelineError, match="did not produce"):
            pipeline.run(str(query_fasta), str(target_fasta))
        assert pipeline.last_run.failed_stage is PipelineState.INDEXING

    def test_preparation_timeout(self, pipeline_config, toolchain, query_fasta, target_fasta,
                                 work_parent):
        toolchain.replace("GIXmake", "exec sleep 30\n")
        pipeline = AlignmentPipeline(pipeline_config.with_changes(timeout=0.5),
                                     tools_config=toolchain.tools_config)

        start = time.monotonic()
        with pytest.raises(StageTimeoutError):
            pipeline.run(str(query_fasta), str(target_fasta))

        assert time.monotonic() - start < 10
        assert pipeline.last_run.state is PipelineState.TIMED_OUT
        assert pipeline.last_run.failed_stage is PipelineState.INDEXING
        assert_cleaned(work_parent)

    def test_alignment_timeout(self, pipeline_config, toolchain, query_fasta, target_fasta,
                               work_parent):
        toolchain.set_output(DEFAULT_PAF_LINES, then="exec sleep 30")
        pipeline = AlignmentPipeline(pipeline_config.with_changes(timeout=0.5),
                                     tools_config=toolchain.tools_config)

        stream = pipeline.run(str(query_fasta), str(target_fasta))
        with pytest.raises(StageTimeoutError):
            list(stream)

        assert stream.run.state is PipelineState.TIMED_OUT
        assert stream.run.failed_stage is PipelineState.ALIGNING
        assert stream.run.records_emitted == 4
        assert_cleaned(work_parent)

    def test_missing_input(self, pipeline, target_fasta, tmp_path, work_parent):
        with pytest.raises(ValidationError):
            pipeline.run(str(tmp_path / "absent.fa"), str(target_fasta))

        assert pipeline.last_run.state is PipelineState.FAILED
        assert pipeline.last_run.failed_stage is PipelineState.VALIDATING
        assert_cleaned(work_parent)

    def test_missing_binary(self, pipeline_config, toolchain, query_fasta, target_fasta, tmp_path):
        tools = dict(toolchain.tools_config, fastga_path=str(tmp_path / "nowhere" / "FastGA"))
        pipeline = AlignmentPipeline(pipeline_config, tools_config=tools)

        with pytest.raises(ValidationError):
            pipeline.run(str(query_fasta), str(target_fasta))
        assert pipeline.last_run.failed_stage is PipelineState.VALIDATING

    def test_psl_cannot_be_parsed(self, pipeline_config, toolchain, query_fasta, target_fasta):
        pipeline = AlignmentPipeline(pipeline_config.with_changes(output_format="psl"),
                                     tools_config=toolchain.tools_config)
        with pytest.raises(ValidationError):
            pipeline.run(str(query_fasta), str(target_fasta))


class TestCancellation:
    """Test stopping a run while the aligner is still producing"""

    def test_processor_stops_stream(self, pipeline_config, toolchain, query_fasta, target_fasta,
                                    work_parent):
        toolchain.set_output(DEFAULT_PAF_LINES, then="exec sleep 30")
        seen = []

        def processor(query_set):
            seen.append(query_set.query_name)
            return False

        start = time.monotonic()
        pipeline_run = align_queries(str(query_fasta), str(target_fasta), pipeline_config,
                                     processor, tools_config=toolchain.tools_config)

        assert time.monotonic() - start < 10
        assert seen == ["chr1"]
        assert pipeline_run.cancelled
        assert pipeline_run.state is PipelineState.FAILED
        assert pipeline_run.failed_stage is PipelineState.ALIGNING
        assert_cleaned(work_parent)

    def test_processor_sees_every_query(self, pipeline, query_fasta, target_fasta):
        seen = []

        pipeline_run = pipeline.align_queries(
            str(query_fasta), str(target_fasta),
            lambda query_set: seen.append((query_set.query_name, len(query_set))))

        assert seen == [("chr1", 2), ("chr2", 1), ("chr3", 1)]
        assert pipeline_run.success

    def test_cancel_from_another_thread(self, pipeline, toolchain, query_fasta, target_fasta):
        toolchain.set_output(DEFAULT_PAF_LINES, then="exec sleep 30")
        stream = pipeline.run(str(query_fasta), str(target_fasta))
        canceller = threading.Timer(0.3, pipeline.cancel)
        canceller.start()

        with pytest.raises(StreamCancelledError):
            list(stream)

        canceller.join()
        assert stream.run.cancelled
        assert stream.run.state is PipelineState.FAILED

    def test_close_before_reading(self, pipeline, toolchain, query_fasta, target_fasta,
                                  work_parent):
        toolchain.set_output(DEFAULT_PAF_LINES, then="exec sleep 30")

        stream = pipeline.run(str(query_fasta), str(target_fasta))
        stream.close()

        assert stream.run.cancelled
        assert_cleaned(work_parent)
        with pytest.raises(StreamCancelledError):
            list(stream)


class TestOutputFiles:
    """Test run_to_file"""

    def test_binary_container(self, pipeline, query_fasta, target_fasta, tmp_path):
        output = tmp_path / "out" / "result.1aln"

        pipeline_run = pipeline.run_to_file(str(query_fasta), str(target_fasta), str(output))

        assert pipeline_run.success
        with open_for_read(str(output)) as reader:
            records = list(reader)
            assert [e.name for e in reader.query_catalog] == ["chr1", "chr2", "chr3"]
            assert reader.db_paths[0] == str(query_fasta)
            assert "FastGA" in reader.provenance['command']
        assert len(records) == 4

    def test_raw_paf_copy(self, pipeline, query_fasta, target_fasta, tmp_path):
        output = tmp_path / "raw.paf"

        pipeline.run_to_file(str(query_fasta), str(target_fasta), str(output))

        assert output.read_text() == "".join(line + "\n" for line in DEFAULT_PAF_LINES)

    def test_psl_written_raw(self, pipeline_config, toolchain, query_fasta, target_fasta, tmp_path):
        toolchain.set_output(["psLayout version 3", "1\t2\t3"])
        pipeline = AlignmentPipeline(pipeline_config.with_changes(output_format="psl"),
                                     tools_config=toolchain.tools_config)
        output = tmp_path / "out.psl"

        pipeline_run = pipeline.run_to_file(str(query_fasta), str(target_fasta), str(output))

        assert pipeline_run.success
        assert output.read_text().startswith("psLayout")
        assert toolchain.aligner_args()[0] == "-psl"

    def test_failed_container_is_removed(self, pipeline_config, toolchain, query_fasta,
                                         target_fasta, tmp_path):
        toolchain.set_output(DEFAULT_PAF_LINES, then="exit 4")
        output = tmp_path / "result.1aln"
        pipeline = AlignmentPipeline(pipeline_config, tools_config=toolchain.tools_config)

        with pytest.raises(ProcessError):
            pipeline.run_to_file(str(query_fasta), str(target_fasta), str(output))

        assert not output.exists()


def test_concurrent_invocations(pipeline, query_fasta, target_fasta, work_parent):
    results = {}

    def invoke(name):
        results[name] = pipeline.align(str(query_fasta), str(target_fasta))

    threads = [threading.Thread(target=invoke, args=(n,)) for n in ("a", "b", "c")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)

    assert sorted(results) == ["a", "b", "c"]
    assert all(len(records) == 4 for records in results.values())
    assert_cleaned(work_parent)


def test_pipeline_from_config_file(toolchain, query_fasta, target_fasta, work_parent, tmp_path,
                                   monkeypatch):
    config_path = tmp_path / "fastga.yml"
    config_path.write_text(
        f"tools:\n  bin_dir: {toolchain.bin_dir}\n"
        f"pipeline:\n  threads: 3\n  temp_dir: {work_parent}\n"
        "streaming:\n  buffer_depth: 2\n")
    for key in list(os.environ):
        if key.startswith("FASTGA_"):
            monkeypatch.delenv(key)

    pipeline = AlignmentPipeline.from_config(ConfigManager(str(config_path)))
    seen = []
    pipeline_run = pipeline.align_queries(str(query_fasta), str(target_fasta),
                                          lambda query_set: seen.append(query_set.query_id))

    assert pipeline.buffer_depth == 2
    assert pipeline.config.threads == 3
    assert "-T3" in toolchain.aligner_args()
    assert seen == [0, 1, 2]
    assert pipeline_run.success
    assert_cleaned(work_parent)
