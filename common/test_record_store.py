import json

import pytest

from common.errors import InvalidTransition, RecordNotFound, StaleTransition
from common.record_store import OUTSTANDING_SCENE, load_captions
from common.schemas import Caption, ScenePatch, TaskEnvelope, VideoPatch
from common.status import SceneStatus, VideoStatus
from common.tasks import GENERATE_SCRIPT, generate_audio_task, generate_scene_image_task, generate_script_task


def make_video(store, **kwargs):
    video, _ = store.create_video(
        owner_id=kwargs.get("owner_id", "user-1"),
        theme=kwargs.get("theme", "a lighthouse keeper's last night"),
        voice_id=kwargs.get("voice_id", "v1"),
    )
    return video


def advance_to(store, video_id, status):
    """Walk a video through the state machine with the fields each status needs."""
    steps = [
        (VideoStatus.GENERATING_SCRIPT, None),
        (VideoStatus.GENERATING_AUDIO, VideoPatch(script="a script")),
        (VideoStatus.GENERATING_CAPTIONS, VideoPatch(audio_url="https://blobs.test/a.mp3")),
        (VideoStatus.GENERATING_SCENES, None),
        (VideoStatus.GENERATING_IMAGES, None),
    ]
    for target, patch in steps:
        store.transition_video(video_id, target, patch=patch)
        if target == status:
            return


def test_create_video_starts_pending_with_outbox_row(store):
    video, outbox_ids = store.create_video(
        owner_id="user-1", theme="lighthouses", voice_id="v1", next_task=generate_script_task,
    )
    assert video.status == VideoStatus.PENDING.value
    assert len(outbox_ids) == 1

    message = store.get_outbox_message(outbox_ids[0])
    assert message.task_type == GENERATE_SCRIPT
    assert message.delivered_at is None
    envelope = TaskEnvelope.model_validate_json(message.envelope)
    assert envelope.payload == {"video_id": video.id}


def test_get_missing_records_raise(store):
    with pytest.raises(RecordNotFound):
        store.get_video(999)
    with pytest.raises(RecordNotFound):
        store.get_scene(999)
    with pytest.raises(RecordNotFound):
        store.get_video_with_scenes(999)


def test_transition_writes_patch_and_outbox_atomically(store):
    video = make_video(store)
    store.transition_video(video.id, VideoStatus.GENERATING_SCRIPT)
    ids = store.transition_video(
        video.id,
        VideoStatus.GENERATING_AUDIO,
        patch=VideoPatch(script="the script"),
        tasks=[generate_audio_task(video.id)],
    )
    reloaded = store.get_video(video.id)
    assert reloaded.status == VideoStatus.GENERATING_AUDIO.value
    assert reloaded.script == "the script"
    assert len(ids) == 1


def test_transition_from_wrong_status_is_stale(store):
    video = make_video(store)
    with pytest.raises(StaleTransition):
        store.transition_video(video.id, VideoStatus.GENERATING_AUDIO, patch=VideoPatch(script="s"))
    assert store.get_video(video.id).status == VideoStatus.PENDING.value


def test_stale_transition_rolls_back_outbox(store):
    video = make_video(store)
    with pytest.raises(StaleTransition):
        store.transition_video(
            video.id,
            VideoStatus.GENERATING_AUDIO,
            patch=VideoPatch(script="s"),
            tasks=[generate_audio_task(video.id)],
        )
    assert store.pending_outbox() == []


def test_transition_rejects_inconsistent_fields(store):
    video = make_video(store)
    store.transition_video(video.id, VideoStatus.GENERATING_SCRIPT)
    with pytest.raises(InvalidTransition):
        store.transition_video(video.id, VideoStatus.GENERATING_AUDIO)  # no script
    assert store.get_video(video.id).status == VideoStatus.GENERATING_SCRIPT.value


def test_expected_must_be_legal_predecessors(store):
    video = make_video(store)
    with pytest.raises(InvalidTransition):
        store.transition_video(video.id, VideoStatus.READY_TO_RENDER, expected=(VideoStatus.PENDING,))


def test_only_one_conditional_transition_wins(store):
    video = make_video(store)
    advance_to(store, video.id, VideoStatus.GENERATING_IMAGES)
    store.update_video_fields(video.id, VideoPatch(captions=[Caption(word="hi", start_time=0, end_time=0.4)]))

    store.transition_video(video.id, VideoStatus.READY_TO_RENDER, expected=(VideoStatus.GENERATING_IMAGES,))
    with pytest.raises(StaleTransition):
        store.transition_video(video.id, VideoStatus.READY_TO_RENDER, expected=(VideoStatus.GENERATING_IMAGES,))


def test_mark_failed_is_absorbing(store):
    video = make_video(store)
    assert store.mark_video_failed(video.id) is True
    assert store.mark_video_failed(video.id) is False
    with pytest.raises(StaleTransition):
        store.transition_video(video.id, VideoStatus.GENERATING_SCRIPT)


def test_partial_updates_do_not_clobber_other_fields(store):
    video = make_video(store)
    advance_to(store, video.id, VideoStatus.GENERATING_IMAGES)

    store.update_video_fields(video.id, VideoPatch(captions=[Caption(word="one", start_time=0.0, end_time=0.5)]))
    store.update_video_fields(video.id, VideoPatch(title="A Title"))

    reloaded = store.get_video(video.id)
    assert reloaded.title == "A Title"
    assert reloaded.script == "a script"
    assert reloaded.status == VideoStatus.GENERATING_IMAGES.value
    assert json.loads(reloaded.captions) == [{"word": "one", "start_time": 0.0, "end_time": 0.5}]
    assert load_captions(reloaded.captions)[0].word == "one"


def test_update_fields_validates_against_current_status(store):
    video = make_video(store)
    with pytest.raises(InvalidTransition):
        store.update_video_fields(video.id, VideoPatch(audio_url="https://blobs.test/a.mp3"))


def test_patches_forbid_unknown_fields():
    with pytest.raises(ValueError):
        VideoPatch(status="completed")
    with pytest.raises(ValueError):
        ScenePatch(video_id=3)


def test_scenes_are_listed_by_index_and_counted(store):
    video = make_video(store)
    for index in (2, 0, 1):
        store.create_scene(video.id, f"prompt {index}", index)

    scenes = store.list_scenes(video.id)
    assert [s.index for s in scenes] == [0, 1, 2]
    assert store.count_scenes(video.id) == 3
    assert store.count_scenes(video.id, OUTSTANDING_SCENE) == 3

    store.transition_scene(scenes[0].id, SceneStatus.GENERATING)
    store.transition_scene(scenes[0].id, SceneStatus.COMPLETED, patch=ScenePatch(image_url="https://blobs.test/0.png"))
    assert store.count_scenes(video.id, OUTSTANDING_SCENE) == 2


def test_duplicate_scene_index_is_rejected(store):
    video = make_video(store)
    store.create_scene(video.id, "first", 0)
    with pytest.raises(Exception):
        store.create_scene(video.id, "second", 0)
    assert store.count_scenes(video.id) == 1


def test_create_scene_writes_its_image_task(store):
    video = make_video(store)
    scene, ids = store.create_scene(video.id, "prompt", 0, next_task=generate_scene_image_task)
    envelope = TaskEnvelope.model_validate_json(store.get_outbox_message(ids[0]).envelope)
    assert envelope.payload == {"scene_id": scene.id}
    assert envelope.lane == "low"


def test_scene_cannot_complete_without_image(store):
    video = make_video(store)
    scene, _ = store.create_scene(video.id, "prompt", 0)
    store.transition_scene(scene.id, SceneStatus.GENERATING)
    with pytest.raises(InvalidTransition):
        store.transition_scene(scene.id, SceneStatus.COMPLETED)


def test_completed_scene_cannot_restart(store):
    video = make_video(store)
    scene, _ = store.create_scene(video.id, "prompt", 0)
    store.transition_scene(scene.id, SceneStatus.GENERATING)
    store.transition_scene(scene.id, SceneStatus.COMPLETED, patch=ScenePatch(image_url="https://blobs.test/0.png"))
    with pytest.raises(StaleTransition):
        store.transition_scene(scene.id, SceneStatus.GENERATING)


def test_outbox_delivery_bookkeeping(store):
    _, ids = store.create_video(owner_id="u", theme="t", voice_id="v", next_task=generate_script_task)
    assert [m.id for m in store.pending_outbox()] == ids

    store.mark_outbox_attempt_failed(ids[0], "broker down")
    message = store.get_outbox_message(ids[0])
    assert message.attempts == 1
    assert message.last_error == "broker down"

    store.mark_outbox_delivered(ids[0])
    assert store.pending_outbox() == []


def test_pending_outbox_respects_min_age(store):
    store.create_video(owner_id="u", theme="t", voice_id="v", next_task=generate_script_task)
    assert store.pending_outbox(min_age_seconds=3600) == []
    assert len(store.pending_outbox(min_age_seconds=0)) == 1


def test_update_scene_fields_keeps_status(store):
    video = make_video(store)
    scene, _ = store.create_scene(video.id, "old prompt", 0)

    store.update_scene_fields(scene.id, ScenePatch(prompt="new prompt"))

    reloaded = store.get_scene(scene.id)
    assert reloaded.prompt == "new prompt"
    assert reloaded.status == SceneStatus.PENDING.value
    with pytest.raises(RecordNotFound):
        store.update_scene_fields(999, ScenePatch(prompt="x"))
