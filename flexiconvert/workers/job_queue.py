"""Job queue module for background conversions.

Holds record ids waiting to be converted and runs them on a fixed pool of
daemon worker threads, so uploads return immediately and callers poll the
record for progress. Record state itself lives in the record store; this
module only tracks what is queued and what is running.
"""

import logging
import queue
import threading
from typing import Any, Callable, Dict, Optional

from flexiconvert.core.exceptions import ServerBusyError

# Constants
DEFAULT_QUEUE_MAX_SIZE: int = 100

logger = logging.getLogger(__name__)

# returns False when the job ended in a failed record
Processor = Callable[[str, Dict[str, Any]], Optional[bool]]
FailureHandler = Callable[[str, BaseException], None]

# Module-level state
_work_queue: "queue.Queue" = queue.Queue(maxsize=DEFAULT_QUEUE_MAX_SIZE)
_processor: Optional[Processor] = None
_failure_handler: Optional[FailureHandler] = None
_stats_lock = threading.Lock()
_stats: Dict[str, int] = {"active": 0, "processed": 0, "failed": 0, "workers": 0}


def configure(max_size: int) -> None:
    """Replace the queue with one bounded at ``max_size``.

    Running workers block on the current queue, so once they have started
    the existing queue is kept.
    """
    global _work_queue
    if _stats["workers"]:
        logger.warning("Workers already running; keeping queue max size %s", _work_queue.maxsize)
        return
    _work_queue = queue.Queue(maxsize=max(1, int(max_size)))


def enqueue(record_id: str, task_data: Dict[str, Any]) -> None:
    """Add a record to the processing queue.

    Raises:
        ServerBusyError: The queue is full.
    """
    try:
        _work_queue.put_nowait((record_id, task_data))
    except queue.Full as e:
        logger.warning(f"[{record_id}] Queue full ({_work_queue.maxsize}); rejecting")
        raise ServerBusyError() from e
    logger.info(f"[{record_id}] Job enqueued")


def set_processor(
    processor_func: Processor,
    failure_handler: Optional[FailureHandler] = None,
) -> None:
    """Set the function that processes jobs.

    Args:
        processor_func: Function that takes (record_id, task_data) and processes the job.
            Returning False counts the job as failed.
        failure_handler: Called with (record_id, exception) when the processor raises.
    """
    global _processor, _failure_handler
    _processor = processor_func
    _failure_handler = failure_handler


def _bump(key: str, delta: int = 1) -> None:
    with _stats_lock:
        _stats[key] += delta


def run_one(record_id: str, task_data: Dict[str, Any]) -> None:
    """Process a single job the way a worker would."""
    if _processor is None:
        logger.error(f"[{record_id}] No processor configured")
        _bump("failed")
        if _failure_handler is not None:
            _failure_handler(record_id, RuntimeError("No processor configured"))
        return

    _bump("active")
    try:
        succeeded = _processor(record_id, task_data) is not False
        _bump("processed" if succeeded else "failed")
    except Exception as e:
        logger.exception(f"[{record_id}] Processing failed: {e}")
        _bump("failed")
        if _failure_handler is not None:
            try:
                _failure_handler(record_id, e)
            except Exception as handler_error:
                logger.exception(f"[{record_id}] Failure handler error: {handler_error}")
    finally:
        _bump("active", -1)


def _worker() -> None:
    """Background worker that processes jobs from the queue."""
    logger.info("Job queue worker started")

    while True:
        try:
            record_id, task_data = _work_queue.get()
            logger.info(f"[{record_id}] Processing started")
            try:
                run_one(record_id, task_data)
            finally:
                _work_queue.task_done()
        except Exception as e:
            logger.exception(f"Worker error: {e}")


def start_workers(num_workers: int = 2) -> None:
    """Start background worker threads."""
    for i in range(num_workers):
        worker_thread = threading.Thread(target=_worker, daemon=True, name=f"conversion-worker-{i}")
        worker_thread.start()
    _bump("workers", num_workers)
    logger.info(f"Started {num_workers} conversion workers")


def get_stats() -> Dict[str, int]:
    with _stats_lock:
        snapshot = dict(_stats)
    snapshot["queued"] = _work_queue.qsize()
    snapshot["max_size"] = _work_queue.maxsize
    return snapshot
