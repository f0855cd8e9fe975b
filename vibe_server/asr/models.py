from __future__ import annotations

"""
Typed transcript contracts shared by the job executor and API endpoints.

Design intent:
- Enforce timestamp-valid segment payloads at API boundaries.
- Hold one time unit (seconds) for every segment leaving the engine layer.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    text: str
    speaker: str | None = None

    @model_validator(mode="after")
    def _validate_window(self) -> "Segment":
        if self.end < self.start:
            raise ValueError("Segment.end must be >= Segment.start")
        return self


class TranscriptResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = ""
    segments: list[Segment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_order(self) -> "TranscriptResult":
        previous = 0.0
        for index, segment in enumerate(self.segments):
            if segment.start < previous:
                raise ValueError(
                    f"Segment {index} starts at {segment.start} before previous start {previous}"
                )
            previous = segment.start
        return self


def join_segment_text(segments: list[Segment]) -> str:
    return " ".join(item.text.strip() for item in segments if item.text.strip())
