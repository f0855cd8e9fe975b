from vibe_server.asr.formatting import as_srt, as_text, as_vtt, format_timestamp, render_transcript
from vibe_server.asr.models import Segment


def _segments() -> list[Segment]:
    return [
        Segment(start=0.0, end=1.25, text="Hello  there."),
        Segment(start=3661.5, end=3662.0, text="Second line", speaker="SPEAKER_01"),
    ]


def test_format_timestamp_rolls_over_hours() -> None:
    assert format_timestamp(3661.5) == "01:01:01,500"
    assert format_timestamp(0.0004, separator=".") == "00:00:00.000"


def test_as_text_prefixes_speaker_only_when_present() -> None:
    assert as_text(_segments()) == "Hello there.\nSPEAKER_01: Second line"


def test_as_srt_numbers_cues() -> None:
    out = as_srt(_segments())
    assert out.startswith("1\n00:00:00,000 --> 00:00:01,250\nHello there.\n")
    assert "2\n01:01:01,500 --> 01:01:02,000\nSPEAKER_01: Second line\n" in out


def test_as_vtt_has_header_and_dot_millis() -> None:
    out = as_vtt(_segments())
    assert out.startswith("WEBVTT\n")
    assert "00:00:00.000 --> 00:00:01.250" in out


def test_render_transcript_dispatches_by_format() -> None:
    segments = _segments()
    assert render_transcript(segments, "text") == as_text(segments)
    assert render_transcript(segments, "vtt") == as_vtt(segments)
    assert render_transcript(segments, "srt") == as_srt(segments)
