from pathlib import Path

from vibe_server.internal_core.asr.base import EngineSegment
from vibe_server.internal_core.asr.mock import MockEngine
from vibe_server.internal_core.contracts import (
    DiarizeSettings,
    ResolvedTranscribeOptions,
)
from vibe_server.internal_core.executor import JobExecutor, ProgressChannel, TranscriptionJob
from vibe_server.internal_core.job_registry import InMemoryJobRegistry
from vibe_server.internal_core.model_resource import ModelResource
from vibe_server.utils.model_paths import ModelCatalog


def _executor(engine: MockEngine, model_dir: Path) -> tuple[JobExecutor, InMemoryJobRegistry, ModelResource]:
    registry = InMemoryJobRegistry()
    resource = ModelResource(engine)
    catalog = ModelCatalog(model_dir=model_dir, default_name="base", files={"base": "base.bin"})
    executor = JobExecutor(
        registry,
        resource,
        catalog,
        diarize_segment_model="segmentation.onnx",
        diarize_embedding_model="embedding.onnx",
        progress_buffer=4,
    )
    return executor, registry, resource


def _job(registry: InMemoryJobRegistry, model_dir: Path, audio: Path, **option_kwargs) -> TranscriptionJob:
    job_id = registry.create(model_name="base")
    return TranscriptionJob(
        job_id=job_id,
        model_name="base",
        model_path=str(model_dir / "base.bin"),
        options=ResolvedTranscribeOptions(path=str(audio), **option_kwargs),
        cleanup_paths=(str(audio),),
    )


def _audio(tmp_path: Path) -> Path:
    audio = tmp_path / "clip.wav"
    audio.write_bytes(b"RIFF0000WAVE")
    return audio


def test_run_completes_job_and_joins_text(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine(
        [
            EngineSegment(start=0.0, end=1.0, text=" hello "),
            EngineSegment(start=1.0, end=1.0, text=""),
            EngineSegment(start=1.0, end=2.5, text="world"),
        ]
    )
    executor, registry, _ = _executor(engine, model_dir)
    job = _job(registry, model_dir, _audio(tmp_path))

    outcome = executor.run(job)

    record = registry.get(job.job_id)
    assert outcome.status == "completed"
    assert record is not None and record.status == "completed"
    assert record.result is not None
    assert record.result.text == "hello world"
    assert [s.text for s in record.result.segments] == ["hello", "", "world"]
    assert all(s.start <= s.end for s in record.result.segments)


def test_run_removes_job_local_upload(tmp_path: Path, model_dir: Path) -> None:
    executor, registry, _ = _executor(MockEngine(), model_dir)
    audio = _audio(tmp_path)
    executor.run(_job(registry, model_dir, audio))
    assert not audio.exists()


def test_engine_failure_marks_job_failed_and_releases_model(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine(fail_transcribe="decoder exploded")
    executor, registry, resource = _executor(engine, model_dir)
    job = _job(registry, model_dir, _audio(tmp_path))

    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error == "decoder exploded"
    assert record.error_kind == "engine_failure"
    # Lock released: a second acquire does not block.
    with resource.acquire_exclusive() as slot:
        assert slot.model_path == str((model_dir / "base.bin").resolve())


def test_model_load_failure_is_job_failure(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine(fail_load_paths=[str((model_dir / "base.bin").resolve())])
    executor, registry, resource = _executor(engine, model_dir)
    job = _job(registry, model_dir, _audio(tmp_path))

    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error_kind == "model_load_failed"
    assert resource.loaded_model_path is None


def test_diarization_without_aux_models_fails_job(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine()
    executor, registry, _ = _executor(engine, model_dir)
    job = _job(
        registry,
        model_dir,
        _audio(tmp_path),
        diarize=DiarizeSettings(threshold=0.5, max_speakers=2),
    )

    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error_kind == "model_not_found"
    assert "segmentation.onnx" in (record.error or "")
    assert engine.transcribe_calls == []


def test_diarization_with_aux_models_labels_speakers(tmp_path: Path, model_dir: Path, write_model) -> None:
    write_model(model_dir / "segmentation.onnx")
    write_model(model_dir / "embedding.onnx")
    executor, registry, _ = _executor(MockEngine(), model_dir)
    job = _job(
        registry,
        model_dir,
        _audio(tmp_path),
        diarize=DiarizeSettings(threshold=0.5, max_speakers=2),
    )

    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None and record.result is not None
    assert [s.speaker for s in record.result.segments] == ["SPEAKER_00", "SPEAKER_01"]


def test_invalid_engine_output_fails_job(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine([EngineSegment(start=2.0, end=1.0, text="backwards")])
    executor, registry, _ = _executor(engine, model_dir)
    job = _job(registry, model_dir, _audio(tmp_path))

    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error_kind == "engine_failure"


def test_unexpected_exception_is_captured(tmp_path: Path, model_dir: Path, monkeypatch) -> None:
    engine = MockEngine()
    executor, registry, _ = _executor(engine, model_dir)

    def explode(*args, **kwargs):
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(engine, "_run", explode)
    job = _job(registry, model_dir, _audio(tmp_path))
    executor.run(job)

    record = registry.get(job.job_id)
    assert record is not None
    assert record.status == "failed"
    assert record.error == "division by zero"


def test_dispatched_jobs_never_overlap_inference(tmp_path: Path, model_dir: Path) -> None:
    engine = MockEngine(transcribe_delay_sec=0.02)
    executor, registry, _ = _executor(engine, model_dir)
    threads = []
    job_ids = []
    for index in range(4):
        audio = tmp_path / f"clip_{index}.wav"
        audio.write_bytes(b"RIFF0000WAVE")
        job = _job(registry, model_dir, audio)
        job_ids.append(job.job_id)
        threads.append(executor.dispatch(job))
    for thread in threads:
        thread.join(timeout=5)

    assert engine.max_concurrent_transcribes == 1
    assert len(engine.load_calls) == 1
    assert {registry.get(job_id).status for job_id in job_ids} == {"completed"}


def test_progress_channel_drops_when_full_or_closed() -> None:
    channel = ProgressChannel(maxsize=2)
    channel.report(10)
    channel.report(20)
    channel.report(30)
    assert channel.dropped == 1
    assert channel.latest() == 20

    channel.close()
    channel.report(90)
    assert channel.dropped == 2
    assert channel.latest() == 20
