"""Database models and configuration for StoryReels."""

from sqlalchemy import (  # type: ignore
    create_engine,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker  # type: ignore
from datetime import datetime
import logging

from common.status import SceneStatus, VideoStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class Video(Base):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    theme = Column(Text, nullable=False)
    voice_id = Column(String, nullable=False)
    script = Column(Text, nullable=True)
    audio_url = Column(Text, nullable=True)
    video_url = Column(Text, nullable=True)  # Final rendered video URL
    captions = Column(Text, nullable=True)  # JSON array of {word, start_time, end_time}
    status = Column(String(50), nullable=False, default=VideoStatus.PENDING.value, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    scenes = relationship("VideoScene", order_by="VideoScene.index", back_populates="video")


class VideoScene(Base):
    __tablename__ = "video_scenes"
    __table_args__ = (UniqueConstraint("video_id", "scene_index", name="uq_video_scene_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(Integer, ForeignKey("videos.id"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    index = Column("scene_index", Integer, nullable=False)
    status = Column(String(50), nullable=False, default=SceneStatus.PENDING.value, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    video = relationship("Video", back_populates="scenes")


class OutboxMessage(Base):
    """A next-stage task persisted alongside the result that produced it."""
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_type = Column(String, nullable=False)
    envelope = Column(Text, nullable=False)  # TaskEnvelope JSON
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    delivered_at = Column(DateTime, nullable=True, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)


def create_session_factory(database_url: str):
    """Build an engine and session factory for ``database_url``."""
    if database_url.startswith('sqlite'):
        logger.info(f"Using SQLite DATABASE_URL = {database_url!r}")
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
    else:
        logger.info("Using PostgreSQL DATABASE_URL")
        engine = create_engine(database_url, pool_pre_ping=True)

    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(session_factory):
    """Initialize database tables."""
    Base.metadata.create_all(bind=session_factory.kw["bind"])
