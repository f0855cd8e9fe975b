import importlib
import json
import threading
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vibe_server.api import main as api_main
from vibe_server.api.main import create_app
from vibe_server.internal_core.asr.mock import MockEngine
from vibe_server.internal_core.context import build_context

AUDIO_BYTES = b"RIFF\x24\x00\x00\x00WAVEfmt "


def _client(service_config, engine: MockEngine | None = None) -> tuple[TestClient, MockEngine]:
    engine = engine or MockEngine()
    context = build_context(service_config, engine=engine)
    return TestClient(create_app(context)), engine


def _submit(client: TestClient, **data) -> dict:
    response = client.post(
        "/transcribe",
        files={"file": ("clip.wav", AUDIO_BYTES, "audio/wav")},
        data=data,
    )
    assert response.status_code == 200, response.text
    return response.json()


def _wait_terminal(client: TestClient, job_id: str) -> dict:
    payload: dict = {}
    for _ in range(200):
        response = client.post("/transcription_status", json={"job_id": job_id})
        assert response.status_code == 200
        payload = response.json()
        if payload["status"] != "processing":
            return payload
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} never finished: {payload}")


def test_healthz(service_config) -> None:
    client, _ = _client(service_config)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_submit_poll_and_fetch_result(service_config) -> None:
    client, engine = _client(service_config)

    accepted = _submit(client, model="base")
    assert accepted["status"] == "processing"
    assert accepted["job_id"]

    status = _wait_terminal(client, accepted["job_id"])
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["model_name"] == "base"

    result = client.post("/transcription_result", json={"job_id": accepted["job_id"]})
    assert result.status_code == 200
    body = result.json()
    assert body["status"] == "completed"
    assert body["segments"]
    assert all(seg["start"] <= seg["end"] for seg in body["segments"])
    assert body["text"] == "(mock) simulated transcript for the uploaded audio."
    assert body["formatted"] is None
    assert len(engine.load_calls) == 1


def test_default_model_used_when_model_field_missing(service_config) -> None:
    client, engine = _client(service_config)
    accepted = _submit(client)
    _wait_terminal(client, accepted["job_id"])
    assert engine.load_calls == [str((Path(service_config.VIBE_MODEL_DIR) / "base.bin").resolve())]


def test_option_layers_reach_engine_with_field_precedence(service_config) -> None:
    client, engine = _client(service_config)
    accepted = _submit(
        client,
        model="tiny",
        module_options=json.dumps({"n_threads": 2, "lang": "de"}),
        task_options=json.dumps({"lang": "fr", "translate": True}),
    )
    _wait_terminal(client, accepted["job_id"])

    options = engine.transcribe_calls[0]
    assert options.lang == "fr"
    assert options.n_threads == 2
    assert options.translate is True
    assert options.temperature == 0.4
    assert Path(options.path).is_absolute()


def test_upload_removed_after_job_finishes(service_config) -> None:
    client, _ = _client(service_config)
    accepted = _submit(client, model="base")
    _wait_terminal(client, accepted["job_id"])
    upload_dir = Path(service_config.VIBE_UPLOAD_DIR)
    assert list(upload_dir.iterdir()) == []


def test_unknown_model_rejected_before_job_created(service_config) -> None:
    context = build_context(service_config, engine=MockEngine())
    client = TestClient(create_app(context))
    response = client.post(
        "/transcribe",
        files={"file": ("clip.wav", AUDIO_BYTES, "audio/wav")},
        data={"model": "does-not-exist"},
    )
    assert response.status_code == 404
    body = response.json()
    assert body["status"] == "error"
    assert body["error_kind"] == "model_not_found"
    assert "does-not-exist" in body["message"]
    assert len(context.registry) == 0


def test_catalog_model_missing_on_disk_rejected(service_config) -> None:
    context = build_context(service_config, engine=MockEngine())
    client = TestClient(create_app(context))
    response = client.post(
        "/transcribe",
        files={"file": ("clip.wav", AUDIO_BYTES, "audio/wav")},
        data={"model": "ghost"},
    )
    assert response.status_code == 404
    assert response.json()["error_kind"] == "model_not_found"
    assert len(context.registry) == 0


def test_missing_file_field_is_invalid_request(service_config) -> None:
    client, _ = _client(service_config)
    response = client.post("/transcribe", data={"model": "base"})
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["error_kind"] == "invalid_request"


def test_empty_upload_is_invalid_request(service_config) -> None:
    client, _ = _client(service_config)
    response = client.post("/transcribe", files={"file": ("clip.wav", b"", "audio/wav")})
    assert response.status_code == 400
    assert "empty" in response.json()["message"]


def test_malformed_task_options_is_invalid_request(service_config) -> None:
    context = build_context(service_config, engine=MockEngine())
    client = TestClient(create_app(context))
    response = client.post(
        "/transcribe",
        files={"file": ("clip.wav", AUDIO_BYTES, "audio/wav")},
        data={"task_options": "{broken"},
    )
    assert response.status_code == 400
    assert response.json()["error_kind"] == "invalid_request"
    assert len(context.registry) == 0


def test_engine_failure_surfaces_as_failed_job(service_config) -> None:
    client, _ = _client(service_config, MockEngine(fail_transcribe="decoder exploded"))
    accepted = _submit(client, model="base")

    status = _wait_terminal(client, accepted["job_id"])
    assert status["status"] == "failed"
    assert status["error"] == "decoder exploded"
    assert status["error_kind"] == "engine_failure"

    result = client.post("/transcription_result", json={"job_id": accepted["job_id"]}).json()
    assert result["status"] == "failed"
    assert result["segments"] == []
    assert result["text"] is None


def test_diarization_without_aux_models_fails_job(service_config) -> None:
    client, _ = _client(service_config)
    accepted = _submit(client, model="base", task_options=json.dumps({"diarize": True}))
    status = _wait_terminal(client, accepted["job_id"])
    assert status["status"] == "failed"
    assert status["error_kind"] == "model_not_found"


def test_result_can_be_rendered_as_srt(service_config) -> None:
    client, _ = _client(service_config)
    accepted = _submit(client, model="base")
    _wait_terminal(client, accepted["job_id"])

    body = client.post(
        "/transcription_result",
        json={"job_id": accepted["job_id"], "format": "srt"},
    ).json()
    assert body["formatted"].startswith("1\n00:00:00,000 --> 00:00:02,500\n")


def test_unknown_job_returns_not_found(service_config) -> None:
    client, _ = _client(service_config)
    for path in ("/transcription_status", "/transcription_result"):
        response = client.post(path, json={"job_id": "nope"})
        assert response.status_code == 404
        assert response.json()["error_kind"] == "job_not_found"


def test_status_requires_job_id(service_config) -> None:
    client, _ = _client(service_config)
    response = client.post("/transcription_status", json={})
    assert response.status_code == 422


def test_list_only_reports_models_present_on_disk(service_config) -> None:
    client, _ = _client(service_config)
    body = client.get("/list").json()
    assert body["models"] == ["base", "tiny"]
    assert body["default_model"] == "base"


def test_load_prewarms_model_and_jobs_reuse_it(service_config) -> None:
    client, engine = _client(service_config)
    response = client.post("/load", json={"model_name": "tiny"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "loaded"
    assert body["model_name"] == "tiny"

    status = client.get("/status").json()
    assert status["loaded_model_path"] == body["model_path"]
    assert status["engine"] == "mock"

    accepted = _submit(client, model="tiny")
    _wait_terminal(client, accepted["job_id"])
    assert len(engine.load_calls) == 1


def test_load_unknown_model_returns_error(service_config) -> None:
    client, engine = _client(service_config)
    response = client.post("/load", json={"model_name": "does-not-exist"})
    assert response.status_code == 404
    assert response.json()["status"] == "error"
    assert engine.load_calls == []


def test_load_failure_reports_model_load_failed(service_config) -> None:
    base = str((Path(service_config.VIBE_MODEL_DIR) / "base.bin").resolve())
    client, _ = _client(service_config, MockEngine(fail_load_paths=[base]))
    response = client.post("/load", json={"model_name": "base"})
    assert response.status_code == 500
    assert response.json()["error_kind"] == "model_load_failed"


def test_worker_start_failure_fails_job_and_removes_upload(service_config, tmp_path: Path, monkeypatch) -> None:
    context = build_context(service_config, engine=MockEngine())
    upload = tmp_path / "upload.wav"
    upload.write_bytes(AUDIO_BYTES)

    def refuse_start(self) -> None:
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(threading.Thread, "start", refuse_start)
    job_id = context.submissions.submit(str(upload), cleanup_paths=[str(upload)])
    monkeypatch.undo()

    record = context.registry.get(job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error_kind == "engine_failure"
    assert "can't start new thread" in (record.error or "")
    assert not upload.exists()
    assert context.executor.progress(job_id) is None


def test_api_module_import_builds_no_service_context(monkeypatch) -> None:
    monkeypatch.setenv("VIBE_ENGINE", "not-an-engine")
    module = importlib.reload(api_main)
    assert not hasattr(module, "app")
    with pytest.raises(ValueError):
        module.create_app()
