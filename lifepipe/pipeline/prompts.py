"""Prompt builders for frame and transition synthesis.

Flat mode keeps a pure white studio background across the timeline.
Narrative mode places the subject in an age-appropriate scene taken from a
narrative track, chosen once per session.
"""

import random
from typing import Optional

# Scene by upper age bound, per narrative track
NARRATIVE_TRACKS: dict[str, list[tuple[int, str]]] = {
    "classic": [
        (6, "a playful preschool classroom with soft toys, books, and child-safe furniture"),
        (12, "an elementary classroom with desks, school posters, and daylight from side windows"),
        (18, "a high-school corridor with lockers and student-life atmosphere"),
        (25, "a university campus garden with academic buildings in the background"),
        (35, "a modern professional workplace with subtle office context"),
        (45, "an outdoor social scene with friends near a lake, natural daylight"),
        (55, "a calm park-side environment with natural greenery"),
        (200, "a peaceful outdoor lifestyle scene with warm natural light"),
    ],
    "explorer": [
        (6, "a sunny backyard with a sandbox and garden toys"),
        (12, "a forest trail on a family hike, dappled sunlight"),
        (18, "a summer camp by a mountain lake"),
        (25, "a bustling train station with a backpack and travel gear"),
        (35, "a coastal harbor town at golden hour"),
        (45, "a vineyard countryside road with rolling hills"),
        (55, "a mountain lodge terrace overlooking a valley"),
        (200, "a quiet seaside promenade with soft evening light"),
    ],
    "creative": [
        (6, "a colorful playroom with crayons and finger paintings on the wall"),
        (12, "a school art room with easels and clay projects"),
        (18, "a music rehearsal room with instruments and amplifiers"),
        (25, "a shared design studio with sketches pinned to the walls"),
        (35, "a bright loft workshop with a large worktable"),
        (45, "a gallery opening with framed artworks in the background"),
        (55, "a home library with shelves of books and a reading chair"),
        (200, "a sunlit garden studio with potted plants and canvases"),
    ],
}

DEFAULT_NARRATIVE_TRACK = "classic"

_COMPOSITION = "Vertical 9:16 composition, centered framing, no extra people, no props, no text."

_IDENTITY = (
    "CRITICAL: Use the provided reference image as the mandatory identity source. "
    "Prioritize the highest possible facial resemblance. Do not change identity, "
    "ethnicity, skin tone, eye color, or defining facial landmarks."
)

_FRAMING = (
    "CRITICAL: medium shot (mid-torso to head). Never close-up or full-body. "
    "Both shoulders fully visible, upper torso and outfit clearly visible, "
    "subject facing the camera directly."
)

# Appearance notes by upper age bound
_APPEARANCE: list[tuple[int, str]] = [
    (3, "infant/toddler proportions, soft facial features, baby hair"),
    (9, "young child proportions, rounded cheeks, child-sized shoulders, no facial hair"),
    (14, "pre-teen proportions, slightly longer face, no adult features"),
    (20, "late-teen proportions, emerging adult bone structure, youthful skin"),
    (30, "young adult, fully mature bone structure, smooth skin"),
    (40, "adult in their thirties, first subtle expression lines"),
    (50, "adult in their forties, visible expression lines, first gray strands"),
    (60, "adult in their fifties, clear wrinkles, graying hair"),
    (70, "senior in their sixties, deeper wrinkles, mostly gray hair"),
    (200, "clearly senior appearance, strong natural wrinkles, gray/white thinning hair"),
]


def select_narrative_track(requested: Optional[str] = None, rng: random.Random | None = None) -> str:
    """Resolve the narrative track for a new narrative-mode session.

    Raises:
        ValueError: If ``requested`` names an unknown track.
    """
    if requested:
        if requested not in NARRATIVE_TRACKS:
            raise ValueError(
                f"Unknown narrative track '{requested}'. Supported: {sorted(NARRATIVE_TRACKS)}"
            )
        return requested
    return (rng or random).choice(sorted(NARRATIVE_TRACKS))


def _band(table: list[tuple[int, str]], age: int) -> str:
    for upper, text in table:
        if age <= upper:
            return text
    return table[-1][1]


def scene_for_age(age: int, track: Optional[str] = None) -> str:
    return _band(NARRATIVE_TRACKS[track or DEFAULT_NARRATIVE_TRACK], age)


def appearance_rule(age: int, gender_hint: str) -> str:
    rule = f"CRITICAL age styling for {age} years: {_band(_APPEARANCE, age)}."
    if gender_hint == "female":
        rule += " No moustache, beard, or masculine facial-hair stubble."
    return rule


def gender_rule(gender_hint: str) -> str:
    if gender_hint in ("male", "female"):
        return (
            f"CRITICAL gender lock: {gender_hint}. Keep {gender_hint}-presenting identity "
            f"across all frames with {gender_hint}-consistent maturation, grooming, "
            "and wardrobe evolution."
        )
    return "Gender: infer from the reference identity without forcing stereotypes."


def _background_rule(age: int, background_mode: str, track: Optional[str]) -> str:
    if background_mode == "flat":
        return "Pure white solid background (#FFFFFF). Keep identical pose and framing across the timeline."
    return (
        f"Place the subject in {scene_for_age(age, track)}. "
        "The environment must be age-appropriate and photorealistic."
    )


def build_source_prompt(background_mode: str, gender_hint: str) -> str:
    """Prompt for the anchor frame generated from the raw reference photo."""
    if background_mode == "flat":
        return " ".join([
            _IDENTITY,
            "Keep the exact same apparent age.",
            gender_rule(gender_hint),
            "Remove the existing background completely and replace it with pure white (#FFFFFF).",
            "Create a clean studio-style medium shot with the subject centered and front-facing.",
            _COMPOSITION,
        ])
    return " ".join([
        _IDENTITY,
        "Keep the exact same apparent age.",
        gender_rule(gender_hint),
        "Create a clean, natural-looking portrait with realistic environment continuity.",
        _COMPOSITION,
    ])


def build_first_frame_prompt(
    age: int, background_mode: str, gender_hint: str, track: Optional[str] = None
) -> str:
    """Prompt for the first aged frame, generated from the anchor."""
    return " ".join([
        _IDENTITY,
        "Treat the subject as the child in the reference photo.",
        f"Create a photorealistic age progression of the exact same person at {age} years old.",
        gender_rule(gender_hint),
        appearance_rule(age, gender_hint),
        _FRAMING,
        _background_rule(age, background_mode, track),
        _COMPOSITION,
    ])


def build_progression_prompt(
    from_age: int,
    to_age: int,
    background_mode: str,
    gender_hint: str,
    frame_index: int,
    track: Optional[str] = None,
) -> str:
    """Prompt for frame ``frame_index`` (2 and later) aged from the previous frame."""
    gap = max(1, to_age - from_age)
    pose = (
        "Transition the subject into a natural standing pose with balanced posture."
        if frame_index == 2
        else "Keep the subject upright and front-facing with stable framing continuity."
    )
    return " ".join([
        _IDENTITY,
        f"The person in the reference image is {from_age} years old.",
        f"Show how this person would look at the age of {to_age}.",
        f"CRITICAL: a clearly visible {gap}-year progression; the result must not be "
        f"confusable with age {from_age}.",
        gender_rule(gender_hint),
        appearance_rule(to_age, gender_hint),
        "Wardrobe evolves gradually and age-appropriately; never the exact same outfit, "
        "never a radical costume jump.",
        _FRAMING,
        pose,
        _background_rule(to_age, background_mode, track),
        _COMPOSITION,
    ])


def build_frame_prompt(
    index: int,
    from_age: int,
    to_age: int,
    background_mode: str,
    gender_hint: str,
    track: Optional[str] = None,
) -> str:
    """Prompt for timeline position ``index`` (1-based; the anchor is 0)."""
    if index == 1:
        return build_first_frame_prompt(to_age, background_mode, gender_hint, track)
    return build_progression_prompt(from_age, to_age, background_mode, gender_hint, index, track)


def build_transition_prompt(
    from_age: int, to_age: int, background_mode: str, track: Optional[str] = None
) -> str:
    if background_mode == "flat":
        background = "Keep the pure white background throughout the whole transition."
    else:
        background = (
            f"The background transitions naturally from {scene_for_age(from_age, track)} "
            f"to {scene_for_age(to_age, track)}."
        )
    return " ".join([
        f"Smooth cinematic age transition of the exact same person from {from_age} "
        f"to {to_age} years old.",
        "Keep medium-shot continuity for the entire transition, both shoulders visible.",
        background,
        "No camera shake, no extra people, no text.",
    ])
