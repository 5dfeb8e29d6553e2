import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text  # type: ignore
import uvicorn

from api.config import (
    API_HOST,
    API_PORT,
    API_RELOAD,
    DATABASE_URL,
    DEBUG,
    FRONTEND_URL,
    LOG_FORMAT,
    LOG_LEVEL,
    MEDIA_DIR,
)
from common.database import create_session_factory, init_db
from common.errors import RecordNotFound
from common.outbox import OutboxDispatcher
from common.record_store import RecordStore, load_captions
from common.schemas import CreateVideoRequest, SceneOut, VideoOut, VideoStatusOut
from common.task_queue import TaskQueue
from common.tasks import generate_script_task

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

record_store = None


def get_store() -> RecordStore:
    """Get the process-wide record store."""
    global record_store
    if record_store is None:
        record_store = RecordStore(create_session_factory(DATABASE_URL))
    return record_store


def get_dispatcher(store: RecordStore = Depends(get_store)):
    """Outbox dispatcher over a fresh RabbitMQ connection for this request."""
    queue = TaskQueue()
    try:
        queue.connect()
    except Exception as e:
        # The outbox row survives; the sweeper will publish it
        logger.warning(f"RabbitMQ connection failed: {e}")
    try:
        yield OutboxDispatcher(store, queue)
    finally:
        queue.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting up FastAPI application...")
    try:
        init_db(get_store().session_factory)
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise  # Database is critical, fail startup if it can't connect
    os.makedirs(MEDIA_DIR, exist_ok=True)
    yield
    logger.info("Shutting down FastAPI application...")


app = FastAPI(
    title="StoryReels API",
    version="1.0.0",
    description="Submission and status API for the video generation pipeline",
    lifespan=lifespan
)

allowed_origins = [FRONTEND_URL]
if DEBUG:
    allowed_origins.extend(["http://localhost:3001", "http://localhost:3000", "http://127.0.0.1:3001"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.mount("/media", StaticFiles(directory=MEDIA_DIR, check_dir=False), name="media")


@app.post("/videos", status_code=202, response_model=VideoStatusOut, tags=["Videos"])
def submit_video(request: CreateVideoRequest,
                 store: RecordStore = Depends(get_store),
                 dispatcher: OutboxDispatcher = Depends(get_dispatcher)):
    """Create a video in ``pending`` and queue its script stage."""
    logger.info(f"Received video submission from {request.owner_id}: '{request.theme[:50]}...'")
    try:
        video, outbox_ids = store.create_video(
            owner_id=request.owner_id,
            theme=request.theme,
            voice_id=request.voice_id,
            title=request.title,
            next_task=generate_script_task,
        )
    except Exception as e:
        logger.error(f"Unexpected error creating video: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    dispatcher.flush(outbox_ids)
    return VideoStatusOut(id=video.id, status=video.status)


@app.get("/videos/{video_id}", response_model=VideoOut, tags=["Videos"])
def get_video(video_id: int, store: RecordStore = Depends(get_store)):
    """Get a video with its ordered scenes and parsed captions."""
    try:
        video = store.get_video_with_scenes(video_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Video not found")

    return VideoOut(
        id=video.id,
        owner_id=video.owner_id,
        title=video.title,
        theme=video.theme,
        voice_id=video.voice_id,
        status=video.status,
        script=video.script,
        audio_url=video.audio_url,
        video_url=video.video_url,
        captions=load_captions(video.captions),
        scenes=[SceneOut.model_validate(scene) for scene in video.scenes],
    )


@app.get("/videos/{video_id}/status", response_model=VideoStatusOut, tags=["Videos"])
def get_video_status(video_id: int, store: RecordStore = Depends(get_store)):
    """Get current status of a video job."""
    try:
        video = store.get_video(video_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Video not found")
    return VideoStatusOut(id=video.id, status=video.status, video_url=video.video_url)


@app.get("/health")
def health_check(store: RecordStore = Depends(get_store)):
    """Health check endpoint."""
    health_status = {"status": "healthy"}

    try:
        with store.session_scope() as session:
            session.execute(text("SELECT 1"))
        health_status["database"] = "ok"
    except Exception as e:
        health_status["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    return health_status


if __name__ == "__main__":
    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT, reload=API_RELOAD)
