"""
Record store for videos, scenes and outbox messages.

Every write is a partial, column-scoped update on one row so that concurrent
stages never clobber each other's fields. Status changes go through
``transition_video`` / ``transition_scene``, which are conditional updates on
the allowed predecessor statuses and therefore double as compare-and-set.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_  # type: ignore
from sqlalchemy.orm import selectinload  # type: ignore

from common.database import OutboxMessage, Video, VideoScene
from common.errors import InvalidTransition, RecordNotFound, StaleTransition
from common.schemas import Caption, ScenePatch, TaskEnvelope, VideoPatch
from common.status import (
    FIELD_RANKS,
    SceneStatus,
    VideoStatus,
    allowed_predecessors,
    allowed_scene_predecessors,
    can_transition,
    can_transition_scene,
    validate_video_fields,
)

logger = logging.getLogger(__name__)

# Scenes that still block the render: not completed, or completed without an image
OUTSTANDING_SCENE = or_(
    VideoScene.status != SceneStatus.COMPLETED.value,
    VideoScene.image_url.is_(None),
)


def dump_captions(captions: List[Caption]) -> str:
    return json.dumps([c.model_dump() for c in captions])


def load_captions(raw: Optional[str]) -> Optional[List[Caption]]:
    if raw is None or raw == "":
        return None
    return [Caption(**c) for c in json.loads(raw)]


def _video_values(patch: Optional[VideoPatch]) -> Dict[str, Any]:
    if patch is None:
        return {}
    values = patch.model_dump(exclude_unset=True)
    if "captions" in values:
        values["captions"] = dump_captions(patch.captions) if patch.captions is not None else None
    return values


def _scene_values(patch: Optional[ScenePatch]) -> Dict[str, Any]:
    if patch is None:
        return {}
    return patch.model_dump(exclude_unset=True)


class RecordStore:
    """Read/update/count/insert operations over videos, scenes and the outbox."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def session_scope(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── videos ───────────────────────────────────────────────────────────────

    def create_video(self, owner_id: str, theme: str, voice_id: str,
                     title: Optional[str] = None,
                     next_task: Optional[Callable[[int], TaskEnvelope]] = None) -> Tuple[Video, List[int]]:
        """Insert a video in ``pending``; ``next_task`` builds its first task from the new id."""
        with self.session_scope() as session:
            video = Video(
                owner_id=owner_id,
                theme=theme,
                voice_id=voice_id,
                title=title,
                status=VideoStatus.PENDING.value,
            )
            session.add(video)
            session.flush()
            outbox_ids = self._add_outbox(session, [next_task(video.id)] if next_task else [])
        logger.info(f"Created video {video.id} for owner {owner_id}")
        return video, outbox_ids

    def get_video(self, video_id: int) -> Video:
        with self.session_scope() as session:
            video = session.get(Video, video_id)
            if video is None:
                raise RecordNotFound(f"Video {video_id} not found")
            return video

    def get_video_with_scenes(self, video_id: int) -> Video:
        with self.session_scope() as session:
            video = (
                session.query(Video)
                .options(selectinload(Video.scenes))
                .filter(Video.id == video_id)
                .first()
            )
            if video is None:
                raise RecordNotFound(f"Video {video_id} not found")
            return video

    def update_video_fields(self, video_id: int, patch: VideoPatch) -> None:
        """Write only the fields set on ``patch``; the status is left untouched."""
        values = _video_values(patch)
        if not values:
            return
        with self.session_scope() as session:
            video = session.get(Video, video_id)
            if video is None:
                raise RecordNotFound(f"Video {video_id} not found")
            post = {f: values.get(f, getattr(video, f)) for f in FIELD_RANKS}
            validate_video_fields(VideoStatus(video.status), post)
            values["updated_at"] = datetime.utcnow()
            session.query(Video).filter(Video.id == video_id).update(values, synchronize_session=False)

    def transition_video(self, video_id: int, to_status: VideoStatus,
                         patch: Optional[VideoPatch] = None,
                         tasks: Iterable[TaskEnvelope] = (),
                         expected: Optional[Iterable[VideoStatus]] = None) -> List[int]:
        """
        Move a video to ``to_status`` if it is currently in one of ``expected``
        (default: every allowed predecessor), writing ``patch`` and queuing
        ``tasks`` in the outbox within the same transaction.

        Returns the outbox ids of the queued tasks. Raises StaleTransition when
        the video is not in an expected status.
        """
        to_status = VideoStatus(to_status)
        expected = tuple(VideoStatus(s) for s in expected) if expected else allowed_predecessors(to_status)
        for status in expected:
            if not can_transition(status, to_status):
                raise InvalidTransition(f"Video cannot move from '{status.value}' to '{to_status.value}'")

        values = _video_values(patch)
        with self.session_scope() as session:
            video = session.get(Video, video_id)
            if video is None:
                raise RecordNotFound(f"Video {video_id} not found")

            post = {f: values.get(f, getattr(video, f)) for f in FIELD_RANKS}
            validate_video_fields(to_status, post)

            values["status"] = to_status.value
            values["updated_at"] = datetime.utcnow()
            updated = (
                session.query(Video)
                .filter(Video.id == video_id, Video.status.in_([s.value for s in expected]))
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                raise StaleTransition(
                    f"Video {video_id} is '{video.status}', expected one of "
                    f"{[s.value for s in expected]} for move to '{to_status.value}'"
                )
            return self._add_outbox(session, tasks)

    def mark_video_failed(self, video_id: int) -> bool:
        """Best-effort move to ``failed``. Returns False if the video was already terminal."""
        try:
            self.transition_video(video_id, VideoStatus.FAILED)
            logger.info(f"Video {video_id} marked failed")
            return True
        except StaleTransition:
            logger.warning(f"Video {video_id} already terminal, not marking failed")
            return False

    # ── scenes ───────────────────────────────────────────────────────────────

    def create_scene(self, video_id: int, prompt: str, index: int,
                     next_task: Optional[Callable[[int], TaskEnvelope]] = None) -> Tuple[VideoScene, List[int]]:
        """Insert one scene in ``pending``; ``next_task`` builds its image task from the new id."""
        with self.session_scope() as session:
            scene = VideoScene(
                video_id=video_id,
                prompt=prompt,
                index=index,
                status=SceneStatus.PENDING.value,
            )
            session.add(scene)
            session.flush()
            outbox_ids = self._add_outbox(session, [next_task(scene.id)] if next_task else [])
            return scene, outbox_ids

    def get_scene(self, scene_id: int) -> VideoScene:
        with self.session_scope() as session:
            scene = session.get(VideoScene, scene_id)
            if scene is None:
                raise RecordNotFound(f"Scene {scene_id} not found")
            return scene

    def list_scenes(self, video_id: int) -> List[VideoScene]:
        with self.session_scope() as session:
            return (
                session.query(VideoScene)
                .filter(VideoScene.video_id == video_id)
                .order_by(VideoScene.index.asc())
                .all()
            )

    def count_scenes(self, video_id: int, *criteria) -> int:
        """Count a video's scenes matching every SQLAlchemy criterion given."""
        with self.session_scope() as session:
            return (
                session.query(VideoScene)
                .filter(VideoScene.video_id == video_id, *criteria)
                .count()
            )

    def update_scene_fields(self, scene_id: int, patch: ScenePatch) -> None:
        values = _scene_values(patch)
        if not values:
            return
        values["updated_at"] = datetime.utcnow()
        with self.session_scope() as session:
            updated = (
                session.query(VideoScene)
                .filter(VideoScene.id == scene_id)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                raise RecordNotFound(f"Scene {scene_id} not found")

    def transition_scene(self, scene_id: int, to_status: SceneStatus,
                         patch: Optional[ScenePatch] = None) -> None:
        to_status = SceneStatus(to_status)
        expected = allowed_scene_predecessors(to_status)
        values = _scene_values(patch)
        if to_status == SceneStatus.COMPLETED and not values.get("image_url"):
            raise InvalidTransition(f"Scene {scene_id} cannot complete without an image URL")

        with self.session_scope() as session:
            scene = session.get(VideoScene, scene_id)
            if scene is None:
                raise RecordNotFound(f"Scene {scene_id} not found")
            if not can_transition_scene(SceneStatus(scene.status), to_status):
                raise StaleTransition(f"Scene {scene_id} is '{scene.status}', cannot move to '{to_status.value}'")

            values["status"] = to_status.value
            values["updated_at"] = datetime.utcnow()
            updated = (
                session.query(VideoScene)
                .filter(VideoScene.id == scene_id, VideoScene.status.in_([s.value for s in expected]))
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                raise StaleTransition(f"Scene {scene_id} changed status concurrently")

    # ── outbox ───────────────────────────────────────────────────────────────

    def _add_outbox(self, session, tasks: Iterable[TaskEnvelope]) -> List[int]:
        messages = [
            OutboxMessage(task_type=task.task_type, envelope=task.model_dump_json())
            for task in tasks
        ]
        if not messages:
            return []
        session.add_all(messages)
        session.flush()
        return [m.id for m in messages]

    def get_outbox_message(self, message_id: int) -> OutboxMessage:
        with self.session_scope() as session:
            message = session.get(OutboxMessage, message_id)
            if message is None:
                raise RecordNotFound(f"Outbox message {message_id} not found")
            return message

    def pending_outbox(self, min_age_seconds: int = 0, limit: int = 100) -> List[OutboxMessage]:
        """Undelivered messages created at least ``min_age_seconds`` ago, oldest first."""
        cutoff = datetime.utcnow() - timedelta(seconds=min_age_seconds)
        with self.session_scope() as session:
            return (
                session.query(OutboxMessage)
                .filter(OutboxMessage.delivered_at.is_(None), OutboxMessage.created_at <= cutoff)
                .order_by(OutboxMessage.id.asc())
                .limit(limit)
                .all()
            )

    def mark_outbox_delivered(self, message_id: int) -> None:
        with self.session_scope() as session:
            session.query(OutboxMessage).filter(OutboxMessage.id == message_id).update(
                {"delivered_at": datetime.utcnow()}, synchronize_session=False
            )

    def mark_outbox_attempt_failed(self, message_id: int, error: str) -> None:
        with self.session_scope() as session:
            session.query(OutboxMessage).filter(OutboxMessage.id == message_id).update(
                {
                    "attempts": OutboxMessage.attempts + 1,
                    "last_error": error[:2000],
                },
                synchronize_session=False,
            )
