"""Session manifest invariants, cascade invalidation and the file-backed store."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from lifepipe.errors import FrameNotFoundError, InvalidSessionError, SessionNotFoundError
from lifepipe.schemas.manifest import FinalVideo, FrameRecord, SessionManifest, TransitionRecord
from lifepipe.services.manifest_store import MANIFEST_FILENAME


def _frame(age: int, name: str | None = None) -> FrameRecord:
    return FrameRecord(age=age, image_path=name or f"/s/frames/age_{age:02d}.png", source_path="/s/src.png")


def _transition(a: int, b: int) -> TransitionRecord:
    return TransitionRecord(
        from_age=a,
        to_age=b,
        video_path=f"/s/transitions/transition_{a:02d}_to_{b:02d}.mp4",
        from_image_path=f"/s/frames/age_{a:02d}.png",
        to_image_path=f"/s/frames/age_{b:02d}.png",
    )


def _manifest(**overrides) -> SessionManifest:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    fields = dict(
        session_id="lifetime_test",
        created_at=now,
        updated_at=now,
        output_dir="/s",
        original_reference_path="/s/input_reference.png",
        ages=[0, 7, 12],
    )
    fields.update(overrides)
    return SessionManifest(**fields)


def _complete_manifest() -> SessionManifest:
    return _manifest(
        anchor=_frame(0),
        frames=[_frame(7), _frame(12)],
        transitions=[_transition(0, 7), _transition(7, 12)],
        final_video=FinalVideo(path="/s/output/lifetime.mp4", duration_sec=10, target_duration_sec=12, speed_factor=1.0),
    )


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("ages", [[0], [0, 0, 7], [12, 7], []])
def test_rejects_bad_ages(ages):
    with pytest.raises(ValidationError):
        _manifest(ages=ages)


def test_rejects_frames_without_anchor():
    with pytest.raises(ValidationError, match="without an anchor"):
        _manifest(frames=[_frame(7)])


def test_rejects_anchor_at_wrong_age():
    with pytest.raises(ValidationError, match="anchor age"):
        _manifest(anchor=_frame(7))


def test_rejects_gap_in_frames():
    with pytest.raises(ValidationError, match="dense prefix"):
        _manifest(anchor=_frame(0), frames=[_frame(12)])


def test_rejects_non_consecutive_transition():
    with pytest.raises(ValidationError, match="consecutive"):
        _manifest(anchor=_frame(0), frames=[_frame(7), _frame(12)], transitions=[_transition(0, 12)])


def test_rejects_duplicate_transition():
    with pytest.raises(ValidationError, match="duplicate"):
        _manifest(anchor=_frame(0), frames=[_frame(7)], transitions=[_transition(0, 7), _transition(0, 7)])


def test_rejects_final_video_on_partial_timeline():
    with pytest.raises(ValidationError, match="final video"):
        _manifest(
            anchor=_frame(0),
            frames=[_frame(7)],
            final_video=FinalVideo(path="/s/out.mp4", duration_sec=8, target_duration_sec=8, speed_factor=1.0),
        )


def test_rejects_narrative_track_in_flat_mode():
    with pytest.raises(ValidationError, match="narrative_track"):
        _manifest(narrative_track="classic")


def test_timeline_and_pairs():
    manifest = _manifest(anchor=_frame(0), frames=[_frame(7)])
    assert [f.age for f in manifest.timeline()] == [0, 7]
    assert not manifest.is_complete()
    assert [(a.age, b.age) for a, b in manifest.required_pairs()] == [(0, 7)]
    assert manifest.frame_for_age(7).age == 7
    assert manifest.frame_for_age(12) is None


def test_empty_manifest_has_no_timeline():
    manifest = _manifest()
    assert manifest.timeline() == []
    assert manifest.required_pairs() == []


# ---------------------------------------------------------------------------
# Cascade invalidation
# ---------------------------------------------------------------------------

def test_invalidate_anchor_drops_everything_downstream():
    manifest = _complete_manifest()
    orphaned = manifest.invalidate_from(0)

    assert manifest.frames == []
    assert manifest.transitions == []
    assert manifest.final_video is None
    assert manifest.anchor is not None
    assert set(orphaned) == {
        Path("/s/frames/age_07.png"),
        Path("/s/frames/age_12.png"),
        Path("/s/transitions/transition_00_to_07.mp4"),
        Path("/s/transitions/transition_07_to_12.mp4"),
        Path("/s/output/lifetime.mp4"),
    }


def test_invalidate_frame_keeps_sibling_frames():
    manifest = _complete_manifest()
    orphaned = manifest.invalidate_from(7)

    assert [f.age for f in manifest.frames] == [7, 12]
    assert manifest.transitions == []
    assert manifest.final_video is None
    assert Path("/s/frames/age_12.png") not in orphaned
    assert len(orphaned) == 3


def test_invalidate_unknown_age_raises():
    manifest = _complete_manifest()
    with pytest.raises(FrameNotFoundError):
        manifest.invalidate_from(30)
    assert manifest.final_video is not None


def test_replace_frame_orphans_previous_image():
    manifest = _complete_manifest()
    orphaned = manifest.replace_frame(_frame(12, "/s/frames/age_12_new.png"))

    assert manifest.frames[1].image_path == "/s/frames/age_12_new.png"
    assert Path("/s/frames/age_12.png") in orphaned
    assert manifest.transitions == []


def test_replace_anchor_keeps_original_reference():
    manifest = _manifest(
        background_mode="narrative",
        anchor=FrameRecord(age=0, image_path="/s/input_reference.png", source_path="/s/input_reference.png"),
        frames=[_frame(7)],
    )
    orphaned = manifest.replace_frame(_frame(0, "/s/frames/anchor_new.png"))

    assert manifest.anchor.image_path == "/s/frames/anchor_new.png"
    assert manifest.frames == []
    assert Path("/s/input_reference.png") not in orphaned
    assert Path("/s/frames/age_07.png") in orphaned


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

def test_create_copies_reference_and_persists(manifests, reference_image):
    manifest = manifests.create(reference_image, [0, 7, 12], background_mode="narrative", narrative_track="explorer")

    assert manifests.exists(manifest.session_id)
    reference_copy = Path(manifest.original_reference_path)
    assert reference_copy.name == "input_reference.png"
    assert reference_copy.read_bytes() == reference_image.read_bytes()

    loaded = manifests.load(manifest.session_id)
    assert loaded.ages == [0, 7, 12]
    assert loaded.narrative_track == "explorer"
    assert loaded.anchor is None


def test_create_drops_track_outside_narrative_mode(manifests, reference_image):
    manifest = manifests.create(reference_image, [0, 7], background_mode="flat", narrative_track="classic")
    assert manifest.narrative_track is None


def test_load_unknown_session(manifests):
    with pytest.raises(SessionNotFoundError):
        manifests.load("lifetime_missing")


@pytest.mark.parametrize("session_id", ["", "../etc", "a/b", "bad id"])
def test_load_rejects_malformed_session_id(manifests, session_id):
    with pytest.raises(InvalidSessionError):
        manifests.load(session_id)


def test_load_rejects_corrupt_manifest(manifests, files, make_session):
    manifest = make_session()
    path = files.get_session_dir(manifest.session_id) / MANIFEST_FILENAME
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(InvalidSessionError):
        manifests.load(manifest.session_id)


def test_load_rejects_manifest_violating_invariants(manifests, files, make_session):
    manifest = make_session()
    path = files.get_session_dir(manifest.session_id) / MANIFEST_FILENAME
    data = json.loads(path.read_text(encoding="utf-8"))
    data["frames"] = data["frames"][1:]
    path.write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(InvalidSessionError):
        manifests.load(manifest.session_id)


def test_save_validates_in_place_mutation(manifests, make_session):
    manifest = make_session(frames=1)
    manifest.frames.append(_frame(30))

    with pytest.raises(ValidationError):
        manifests.save(manifest)
    assert [f.age for f in manifests.load(manifest.session_id).frames] == [7]


def test_save_leaves_no_temp_files(manifests, files, make_session):
    manifest = make_session()
    manifests.update(manifest.session_id, lambda m: setattr(m, "gender_hint", "male"))

    session_dir = files.get_session_dir(manifest.session_id)
    assert [p.name for p in session_dir.iterdir() if p.is_file() and p.suffix == ".tmp"] == []
    assert manifests.load(manifest.session_id).gender_hint == "male"


def test_update_applies_to_latest_document(manifests, make_session):
    manifest = make_session(frames=0)
    stale_copy = manifests.load(manifest.session_id)

    manifests.update(manifest.session_id, lambda m: setattr(m, "gender_hint", "female"))
    updated = manifests.update(manifest.session_id, lambda m: m.frames.append(
        FrameRecord(age=7, image_path="/x/age_07.png", source_path=m.anchor.image_path)
    ))

    assert stale_copy.gender_hint == "auto"
    assert updated.gender_hint == "female"
    assert [f.age for f in updated.frames] == [7]
