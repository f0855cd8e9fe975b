from __future__ import annotations

"""
Render transcript segments as plain text, SubRip or WebVTT.

Design intent:
- Keep CLI and API renderings identical for the same segments.
- Prefix the speaker label only when diarization produced one.
"""

from typing import Literal, Sequence

from vibe_server.asr.models import Segment

TranscriptFormat = Literal["text", "srt", "vtt"]


def _split_ms(seconds: float) -> tuple[int, int, int, int]:
    total_ms = int(round(max(0.0, seconds) * 1000.0))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return hours, minutes, secs, millis


def format_timestamp(seconds: float, *, separator: str = ",") -> str:
    hours, minutes, secs, millis = _split_ms(seconds)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def _line_text(segment: Segment) -> str:
    text = " ".join(segment.text.split())
    if segment.speaker:
        return f"{segment.speaker}: {text}"
    return text


def as_text(segments: Sequence[Segment]) -> str:
    return "\n".join(_line_text(item) for item in segments if item.text.strip())


def as_srt(segments: Sequence[Segment]) -> str:
    blocks: list[str] = []
    for index, segment in enumerate(segments, start=1):
        start = format_timestamp(segment.start)
        end = format_timestamp(segment.end)
        blocks.append(f"{index}\n{start} --> {end}\n{_line_text(segment)}\n")
    return "\n".join(blocks)


def as_vtt(segments: Sequence[Segment]) -> str:
    blocks = ["WEBVTT\n"]
    for segment in segments:
        start = format_timestamp(segment.start, separator=".")
        end = format_timestamp(segment.end, separator=".")
        blocks.append(f"{start} --> {end}\n{_line_text(segment)}\n")
    return "\n".join(blocks)


def render_transcript(segments: Sequence[Segment], fmt: TranscriptFormat) -> str:
    if fmt == "srt":
        return as_srt(segments)
    if fmt == "vtt":
        return as_vtt(segments)
    return as_text(segments)
