import importlib
import sys

from flask import Flask

from flexiconvert import bootstrap
from flexiconvert.config import get_runtime_config
from flexiconvert.factory import create_app


def test_create_app_registers_expected_routes(monkeypatch, runtime_config):
    monkeypatch.setattr("flexiconvert.factory.bootstrap.bootstrap_runtime", lambda: None)
    app = create_app(runtime_config)

    rules = {rule.rule for rule in app.url_map.iter_rules()}
    expected = {
        "/",
        "/health",
        "/favicon.ico",
        "/api/<api_category>-tools/process",
        "/api/<api_category>-tools/download/<record_id>",
        "/download/<record_id>",
        "/status/<record_id>",
        "/api/tools",
        "/api/tools/<api_category>",
        "/api/conversions/history",
        "/api/conversions/stats",
        "/api/conversions/<record_id>",
    }
    assert expected.issubset(rules)


def test_create_app_prepares_storage(monkeypatch, runtime_config):
    monkeypatch.setattr("flexiconvert.factory.bootstrap.bootstrap_runtime", lambda: None)
    app = create_app(runtime_config)

    assert runtime_config.inputs_folder.is_dir()
    assert runtime_config.outputs_folder.is_dir()
    assert runtime_config.database_path.exists()
    assert app.config["MAX_CONTENT_LENGTH"] == runtime_config.max_content_length


def test_bootstrap_runtime_is_idempotent(monkeypatch):
    calls = {"set_processor": 0, "start_workers": 0, "thread_start": 0}

    class DummyThread:
        def __init__(self, *args, **kwargs):
            del args, kwargs

        def start(self):
            calls["thread_start"] += 1

    def _set_processor(*args, **kwargs):
        del args, kwargs
        calls["set_processor"] += 1

    def _start_workers(*args, **kwargs):
        del args, kwargs
        calls["start_workers"] += 1

    monkeypatch.setattr(bootstrap, "_bootstrap_started", False)
    monkeypatch.setattr(bootstrap.threading, "Thread", DummyThread)
    monkeypatch.setattr(bootstrap.conversion_service.job_queue, "set_processor", _set_processor)
    monkeypatch.setattr(bootstrap.conversion_service.job_queue, "start_workers", _start_workers)

    bootstrap.bootstrap_runtime()
    bootstrap.bootstrap_runtime()

    assert calls["set_processor"] == 1
    assert calls["start_workers"] == 1
    assert calls["thread_start"] == 1


def test_root_app_shim_exposes_gunicorn_app(monkeypatch, tmp_path):
    monkeypatch.setattr("flexiconvert.factory.bootstrap.bootstrap_runtime", lambda: None)
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path / "uploads"))
    monkeypatch.delitem(sys.modules, "app", raising=False)
    get_runtime_config.cache_clear()
    try:
        app_module = importlib.import_module("app")
        assert hasattr(app_module, "app")
        assert isinstance(app_module.app, Flask)
    finally:
        get_runtime_config.cache_clear()
