"""Runtime bootstrap for background workers and cleanup daemons."""

from __future__ import annotations

import threading

from flexiconvert.services import conversion_service

_bootstrap_lock = threading.Lock()
_bootstrap_started = False


def bootstrap_runtime() -> None:
    """Start background services once per process."""
    global _bootstrap_started
    with _bootstrap_lock:
        if _bootstrap_started:
            return

        threading.Thread(
            target=conversion_service.cleanup_daemon,
            daemon=True,
            name="conversion-cleanup-daemon",
        ).start()
        conversion_service.job_queue.set_processor(
            conversion_service.process_conversion_job,
            conversion_service.handle_job_crash,
        )
        conversion_service.job_queue.start_workers(conversion_service.get_config().async_workers)
        _bootstrap_started = True
