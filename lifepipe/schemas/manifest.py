"""Pydantic schemas for the durable session manifest.

The manifest is the single source of truth shared by the frame job and the
video job of one session. It is written whole (never patched) and validated
on every load and save, so a manifest on disk always satisfies:

- ages are strictly ascending; ages[0] is the anchor age
- frames are a dense, age-ordered prefix of ages[1:] and require an anchor
- every transition bridges two consecutive ages, one record per pair
- a final video exists only when every age has a frame
"""

from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from lifepipe.errors import FrameNotFoundError

BackgroundMode = Literal["flat", "narrative"]
GenderHint = Literal["auto", "male", "female"]
TransitionOrigin = Literal["speculative", "on_demand"]

BACKGROUND_MODES: tuple[str, ...] = ("flat", "narrative")
GENDER_HINTS: tuple[str, ...] = ("auto", "male", "female")


def transition_key(from_age: int, to_age: int) -> str:
    """Return the registry key for a transition pair, e.g. ``"7-12"``."""
    return f"{from_age}-{to_age}"


class FrameRecord(BaseModel):
    """One generated portrait at a target age."""

    age: int
    image_path: str
    prompt: str = ""
    source_path: str = Field(
        description="Image used as the sole generation input for this frame"
    )


class TransitionRecord(BaseModel):
    """A generated clip bridging two consecutive frames."""

    from_age: int
    to_age: int
    video_path: str
    prompt: str = ""
    from_image_path: str
    to_image_path: str
    origin: TransitionOrigin = "speculative"

    @property
    def key(self) -> str:
        return transition_key(self.from_age, self.to_age)

    def bridges(self, from_frame: FrameRecord, to_frame: FrameRecord) -> bool:
        """True when this clip was rendered from exactly these two frame images."""
        return (
            self.from_age == from_frame.age
            and self.to_age == to_frame.age
            and self.from_image_path == from_frame.image_path
            and self.to_image_path == to_frame.image_path
        )


class FinalVideo(BaseModel):
    """Assembled output video."""

    path: str
    duration_sec: float
    target_duration_sec: float
    speed_factor: float


class SessionManifest(BaseModel):
    """Durable record of one age-progression session."""

    session_id: str
    created_at: datetime
    updated_at: datetime
    output_dir: str
    original_reference_path: str
    background_mode: BackgroundMode = "flat"
    gender_hint: GenderHint = "auto"
    narrative_track: Optional[str] = None
    ages: list[int]
    anchor: Optional[FrameRecord] = None
    frames: list[FrameRecord] = Field(default_factory=list)
    transitions: list[TransitionRecord] = Field(default_factory=list)
    final_video: Optional[FinalVideo] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "SessionManifest":
        ages = self.ages
        if len(ages) < 2 or any(b <= a for a, b in zip(ages, ages[1:])):
            raise ValueError("ages must hold at least two strictly ascending values")

        if self.narrative_track is not None and self.background_mode != "narrative":
            raise ValueError("narrative_track is only valid in narrative mode")

        if self.anchor is not None and self.anchor.age != ages[0]:
            raise ValueError(f"anchor age {self.anchor.age} does not match ages[0]={ages[0]}")
        if self.anchor is None and self.frames:
            raise ValueError("frames cannot exist without an anchor frame")

        frame_ages = [frame.age for frame in self.frames]
        if frame_ages != ages[1:1 + len(frame_ages)]:
            raise ValueError(f"frames {frame_ages} are not a dense prefix of ages {ages[1:]}")

        consecutive = {transition_key(a, b) for a, b in zip(ages, ages[1:])}
        seen: set[str] = set()
        for transition in self.transitions:
            if transition.key not in consecutive:
                raise ValueError(f"transition {transition.key} does not bridge consecutive ages")
            if transition.key in seen:
                raise ValueError(f"duplicate transition {transition.key}")
            seen.add(transition.key)

        if self.final_video is not None and not self.is_complete():
            raise ValueError("final video requires a frame for every age")
        return self

    def timeline(self) -> list[FrameRecord]:
        """Anchor followed by generated frames, in age order."""
        if self.anchor is None:
            return []
        return [self.anchor, *self.frames]

    def is_complete(self) -> bool:
        return len(self.timeline()) == len(self.ages)

    def frame_for_age(self, age: int) -> Optional[FrameRecord]:
        for frame in self.timeline():
            if frame.age == age:
                return frame
        return None

    def required_pairs(self) -> list[tuple[FrameRecord, FrameRecord]]:
        """Consecutive frame pairs that need a transition clip."""
        timeline = self.timeline()
        return list(zip(timeline, timeline[1:]))

    def invalidate_from(self, age: int) -> list[Path]:
        """Drop every artifact that depends on the frame at ``age``.

        Changing the anchor discards all generated frames. Changing any
        other frame keeps sibling frames. In both cases every transition and
        the final video are discarded. The frame at ``age`` itself is left
        for the caller to replace.

        Returns:
            Paths of files no longer referenced by the manifest. Save the
            manifest before deleting them.

        Raises:
            FrameNotFoundError: If no frame exists at ``age``.
        """
        if self.frame_for_age(age) is None:
            raise FrameNotFoundError(f"Age frame {age} not found in session {self.session_id}")

        orphaned: list[str] = []
        if age == self.ages[0]:
            orphaned.extend(frame.image_path for frame in self.frames)
            self.frames = []

        orphaned.extend(transition.video_path for transition in self.transitions)
        self.transitions = []

        if self.final_video is not None:
            orphaned.append(self.final_video.path)
            self.final_video = None

        return [Path(p) for p in orphaned]

    def replace_frame(self, frame: FrameRecord) -> list[Path]:
        """Swap in a regenerated frame and cascade invalidation.

        Returns:
            Orphaned file paths, including the replaced image unless it is
            the original reference photo.
        """
        orphaned = self.invalidate_from(frame.age)
        if frame.age == self.ages[0]:
            previous = self.anchor
            self.anchor = frame
        else:
            index = next(i for i, f in enumerate(self.frames) if f.age == frame.age)
            previous = self.frames[index]
            self.frames[index] = frame

        if (
            previous is not None
            and previous.image_path != frame.image_path
            and previous.image_path != self.original_reference_path
        ):
            orphaned.append(Path(previous.image_path))
        return orphaned
