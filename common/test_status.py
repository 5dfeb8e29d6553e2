import pytest

from common.errors import InvalidTransition
from common.status import (
    STATUS_RANK,
    SceneStatus,
    VideoStatus,
    allowed_predecessors,
    can_transition,
    can_transition_scene,
    is_past,
    validate_video_fields,
)


def test_happy_path_only_moves_forward():
    path = [
        VideoStatus.PENDING,
        VideoStatus.GENERATING_SCRIPT,
        VideoStatus.GENERATING_AUDIO,
        VideoStatus.GENERATING_CAPTIONS,
        VideoStatus.GENERATING_SCENES,
        VideoStatus.GENERATING_IMAGES,
        VideoStatus.READY_TO_RENDER,
        VideoStatus.RENDERING,
        VideoStatus.COMPLETED,
    ]
    for current, nxt in zip(path, path[1:]):
        assert can_transition(current, nxt), f"{current} -> {nxt}"
        assert STATUS_RANK[nxt] > STATUS_RANK[current]


def test_no_backward_or_skipping_moves():
    assert not can_transition(VideoStatus.GENERATING_AUDIO, VideoStatus.GENERATING_SCRIPT)
    assert not can_transition(VideoStatus.PENDING, VideoStatus.GENERATING_AUDIO)
    assert not can_transition(VideoStatus.GENERATING_SCENES, VideoStatus.READY_TO_RENDER)
    assert not can_transition(VideoStatus.GENERATING_CAPTIONS, VideoStatus.RENDERING)
    assert not can_transition(VideoStatus.COMPLETED, VideoStatus.RENDERING)


def test_failed_is_reachable_from_every_non_terminal_status_and_absorbing():
    for status in VideoStatus:
        if status in (VideoStatus.COMPLETED, VideoStatus.FAILED):
            assert not can_transition(status, VideoStatus.FAILED)
        else:
            assert can_transition(status, VideoStatus.FAILED)
    for status in VideoStatus:
        assert not can_transition(VideoStatus.FAILED, status)


def test_in_progress_markers_allow_reentry():
    assert can_transition(VideoStatus.GENERATING_SCRIPT, VideoStatus.GENERATING_SCRIPT)
    assert can_transition(VideoStatus.GENERATING_SCENES, VideoStatus.GENERATING_SCENES)
    assert can_transition(VideoStatus.RENDERING, VideoStatus.RENDERING)
    assert not can_transition(VideoStatus.READY_TO_RENDER, VideoStatus.READY_TO_RENDER)


def test_nothing_transitions_into_pending():
    with pytest.raises(InvalidTransition):
        allowed_predecessors(VideoStatus.PENDING)


def test_scene_transitions():
    assert can_transition_scene(SceneStatus.PENDING, SceneStatus.GENERATING)
    assert can_transition_scene(SceneStatus.GENERATING, SceneStatus.COMPLETED)
    assert can_transition_scene(SceneStatus.GENERATING, SceneStatus.FAILED)
    assert not can_transition_scene(SceneStatus.PENDING, SceneStatus.COMPLETED)
    assert not can_transition_scene(SceneStatus.COMPLETED, SceneStatus.GENERATING)
    assert not can_transition_scene(SceneStatus.FAILED, SceneStatus.GENERATING)


def test_is_past():
    assert is_past(VideoStatus.GENERATING_AUDIO, VideoStatus.GENERATING_SCRIPT)
    assert not is_past(VideoStatus.GENERATING_SCRIPT, VideoStatus.GENERATING_SCRIPT)
    assert not is_past(VideoStatus.FAILED, VideoStatus.GENERATING_SCRIPT)
    assert is_past("completed", "rendering")


def test_validate_fields_rejects_completed_without_video_url():
    fields = {"script": "s", "audio_url": "a", "captions": "[]", "video_url": None}
    with pytest.raises(InvalidTransition):
        validate_video_fields(VideoStatus.COMPLETED, fields)


def test_validate_fields_rejects_artifacts_ahead_of_status():
    with pytest.raises(InvalidTransition):
        validate_video_fields(VideoStatus.GENERATING_SCRIPT, {"script": "too early"})
    with pytest.raises(InvalidTransition):
        validate_video_fields(VideoStatus.GENERATING_AUDIO, {"script": "s", "audio_url": "a"})


def test_validate_fields_requires_captions_from_ready_to_render():
    fields = {"script": "s", "audio_url": "a"}
    validate_video_fields(VideoStatus.GENERATING_IMAGES, fields)
    with pytest.raises(InvalidTransition):
        validate_video_fields(VideoStatus.READY_TO_RENDER, fields)


def test_video_url_allowed_while_rendering():
    fields = {"script": "s", "audio_url": "a", "captions": "[]", "video_url": "v"}
    validate_video_fields(VideoStatus.RENDERING, fields)
    validate_video_fields(VideoStatus.COMPLETED, fields)


def test_failed_accepts_any_fields():
    validate_video_fields(VideoStatus.FAILED, {"video_url": "v"})
    validate_video_fields(VideoStatus.FAILED, {})
