import shutil
import unittest
from pathlib import Path

import pytest

from flexiconvert.core.exceptions import EngineFailedError, ServerBusyError
from flexiconvert.engine.tools import register
from flexiconvert.services import conversion_service
import flexiconvert.workers.job_queue as job_queue

_seen_progress = []


def _copy_handler(ctx):
    ctx.progress(50, "copying", "Copying input")
    _seen_progress.append(conversion_service.get_store().get(ctx.record_id).progress)
    shutil.copyfile(ctx.input_path, ctx.output_path)
    return ctx.output_path


def _failing_handler(ctx):
    ctx.output_path.write_bytes(b"partial")
    raise EngineFailedError("The file is damaged or not a valid file of its type.", engine="FFmpeg", return_code=1)


def _empty_handler(ctx):
    ctx.output_path.touch()
    return ctx.output_path


def _crashing_handler(ctx):
    raise RuntimeError("boom")


register("test-copy", "document", _copy_handler, ("txt",), "txt", download_suffix="_copy")
register("test-fail", "document", _failing_handler, ("txt",), "txt")
register("test-empty", "document", _empty_handler, ("txt",), "txt")
register("test-crash", "document", _crashing_handler, ("txt",), "txt")


@pytest.fixture
def service(monkeypatch, runtime_config, store):
    monkeypatch.setattr(conversion_service, "_config", runtime_config)
    monkeypatch.setattr(conversion_service, "_store", store)
    return store


def _create(store, config, tool, content=b"hello world\n", filename="notes.txt"):
    record = store.create("document", tool, filename, file_size=len(content))
    input_dir = config.inputs_folder / record.id
    input_dir.mkdir(parents=True)
    path = input_dir / f"000_{filename}"
    path.write_bytes(content)
    store.update(record.id, input_paths=[str(path)])
    return record.id


def test_successful_job_completes_record(service, runtime_config):
    _seen_progress.clear()
    record_id = _create(service, runtime_config, "test-copy")

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "completed"
    assert record.progress == 100
    assert record.output_filename == "notes_copy.txt"
    assert record.processed_file_size == len(b"hello world\n")
    assert record.processing_time is not None
    assert Path(record.output_path).read_bytes() == b"hello world\n"
    assert Path(record.output_path).parent == runtime_config.outputs_folder / record_id
    assert _seen_progress == [50]


def test_engine_failure_marks_record_failed_and_removes_output(service, runtime_config):
    record_id = _create(service, runtime_config, "test-fail")

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "failed"
    assert record.error_type == "EngineFailed"
    assert "damaged" in record.error_message
    assert record.output_path is None
    assert not (runtime_config.outputs_folder / record_id).exists()


def test_empty_output_is_reported(service, runtime_config):
    record_id = _create(service, runtime_config, "test-empty")

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "failed"
    assert record.error_type == "OutputMissing"


def test_unexpected_error_is_recorded(service, runtime_config):
    record_id = _create(service, runtime_config, "test-crash")

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "failed"
    assert record.error_type == "UnknownError"
    assert record.error_message == "boom"


def test_missing_input_fails_record(service, runtime_config):
    record_id = _create(service, runtime_config, "test-copy")
    shutil.rmtree(runtime_config.inputs_folder / record_id)

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "failed"
    assert "no longer available" in record.error_message


def test_finished_record_is_not_reprocessed(service, runtime_config):
    record_id = _create(service, runtime_config, "test-copy")
    service.mark_failed(record_id, "cancelled")

    conversion_service.process_conversion_job(record_id, {})

    record = service.get(record_id)
    assert record.status == "failed"
    assert record.error_message == "cancelled"


def test_job_crash_handler_fails_unfinished_record(service, runtime_config):
    record_id = _create(service, runtime_config, "test-copy")

    conversion_service.handle_job_crash(record_id, RuntimeError("worker died"))

    record = service.get(record_id)
    assert record.status == "failed"
    assert record.error_type == "WorkerCrash"
    assert record.error_message == "worker died"


class TestJobQueue(unittest.TestCase):
    def tearDown(self):
        job_queue.set_processor(None)
        job_queue.configure(job_queue.DEFAULT_QUEUE_MAX_SIZE)

    def test_enqueue_raises_when_full(self):
        job_queue.configure(1)
        job_queue.enqueue("first", {})
        with self.assertRaises(ServerBusyError) as ctx:
            job_queue.enqueue("second", {})
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(job_queue.get_stats()["queued"], 1)

    def test_run_one_calls_failure_handler(self):
        failures = []

        def _processor(record_id, task_data):
            raise ValueError("bad input")

        job_queue.set_processor(_processor, lambda record_id, exc: failures.append((record_id, str(exc))))
        before = job_queue.get_stats()["failed"]

        job_queue.run_one("abc", {})

        self.assertEqual(failures, [("abc", "bad input")])
        stats = job_queue.get_stats()
        self.assertEqual(stats["failed"], before + 1)
        self.assertEqual(stats["active"], 0)

    def test_run_one_counts_processed(self):
        calls = []
        job_queue.set_processor(lambda record_id, task_data: calls.append((record_id, task_data)))
        before = job_queue.get_stats()["processed"]

        job_queue.run_one("abc", {"output_extension": "pdf"})

        self.assertEqual(calls, [("abc", {"output_extension": "pdf"})])
        self.assertEqual(job_queue.get_stats()["processed"], before + 1)

    def test_run_one_counts_failed_conversion(self):
        job_queue.set_processor(lambda record_id, task_data: False)
        before = job_queue.get_stats()

        job_queue.run_one("abc", {})

        stats = job_queue.get_stats()
        self.assertEqual(stats["failed"], before["failed"] + 1)
        self.assertEqual(stats["processed"], before["processed"])


def test_process_conversion_job_reports_outcome(service, runtime_config):
    done = _create(service, runtime_config, "test-copy")
    failed = _create(service, runtime_config, "test-fail")

    assert conversion_service.process_conversion_job(done, {}) is True
    assert conversion_service.process_conversion_job(failed, {}) is False
    assert conversion_service.process_conversion_job(done, {}) is False
