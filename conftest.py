"""Shared fixtures: a SQLite record store, an in-memory task queue and fake generators."""

from collections import deque

import pytest

from common.database import create_session_factory, init_db
from common.errors import EnqueueError
from common.outbox import OutboxDispatcher
from common.record_store import RecordStore
from common.schemas import Caption, ScenePrompt
from worker.compositor import CompositionResult

LIGHTHOUSE_SCRIPT = (
    "On his last night, the keeper climbs the spiral stairs one final time. "
    "The lamp turns as it has for forty years, sweeping the dark water. "
    "At dawn a ship he will never meet passes safely by."
)


class FakeQueue:
    """Records envelopes instead of publishing them."""

    def __init__(self):
        self.pending = deque()
        self.enqueued = []
        self.fail = False

    def enqueue(self, envelope):
        if self.fail:
            raise EnqueueError("broker unavailable")
        self.pending.append(envelope)
        self.enqueued.append(envelope)

    def of_type(self, task_type):
        return [e for e in self.enqueued if e.task_type == task_type]

    def drain(self, router, limit=100):
        """Deliver queued tasks to ``router`` until the queue is empty."""
        delivered = 0
        while self.pending and delivered < limit:
            router(self.pending.popleft())
            delivered += 1
        return delivered


class FakeScriptGenerator:
    def __init__(self, script=LIGHTHOUSE_SCRIPT, prompts=None):
        self.script = script
        self.prompts = prompts if prompts is not None else [
            ScenePrompt(image_prompt="A weathered keeper climbing a spiral staircase, lantern in hand", index=0),
            ScenePrompt(image_prompt="The lighthouse beam sweeping across a stormy night sea", index=1),
            ScenePrompt(image_prompt="A cargo ship passing the headland at dawn", index=2),
        ]
        self.script_calls = 0
        self.scene_calls = 0

    def generate_script(self, theme):
        self.script_calls += 1
        return self.script

    def generate_scene_prompts(self, script):
        self.scene_calls += 1
        return list(self.prompts)


class FakeSynthesizer:
    def synthesize(self, text, voice_id):
        return b"ID3" + text.encode()[:32]


class FakeTranscriber:
    def __init__(self, word_count=42, word_seconds=0.5):
        self.word_count = word_count
        self.word_seconds = word_seconds

    def transcribe(self, audio):
        return [
            Caption(word=f"word{i}", start_time=i * self.word_seconds, end_time=(i + 1) * self.word_seconds)
            for i in range(self.word_count)
        ]


class FakeImageGenerator:
    def __init__(self):
        self.fail_for = set()

    def generate_image(self, prompt):
        if prompt in self.fail_for:
            raise RuntimeError("image model unavailable")
        return b"\x89PNG" + prompt.encode()[:16]


class FakeBlobStore:
    def __init__(self):
        self.objects = {}

    def put(self, data, content_type, key):
        self.objects[key] = (data, content_type)
        return f"https://blobs.test/{key}"


class FakeCompositor:
    def __init__(self, video_url="https://cdn.test/videos/final.mp4", render_id=None):
        self.video_url = video_url
        self.render_id = render_id
        self.calls = []

    def compose(self, video_id, audio_url, scenes, captions, duration):
        self.calls.append({
            "video_id": video_id,
            "audio_url": audio_url,
            "scenes": scenes,
            "captions": captions,
            "duration": duration,
        })
        return CompositionResult(video_url=self.video_url, render_id=self.render_id)


@pytest.fixture
def store(tmp_path):
    session_factory = create_session_factory(f"sqlite:///{tmp_path / 'pipeline.db'}")
    init_db(session_factory)
    return RecordStore(session_factory)


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def dispatcher(store, queue):
    return OutboxDispatcher(store, queue)


@pytest.fixture
def fakes():
    return {
        "script_generator": FakeScriptGenerator(),
        "synthesizer": FakeSynthesizer(),
        "transcriber": FakeTranscriber(),
        "image_generator": FakeImageGenerator(),
        "compositor": FakeCompositor(),
        "blob_store": FakeBlobStore(),
    }


@pytest.fixture
def no_download(monkeypatch):
    """Captions read the narration audio over HTTP; serve it from memory instead."""
    monkeypatch.setattr("worker.stages.download", lambda url: b"ID3 narration")


@pytest.fixture
def router(store, dispatcher, fakes, no_download):
    from worker.main import build_router
    return build_router(store, dispatcher, **fakes)
