"""
Health monitor for stage workers.

Serves ``/health`` and ``/metrics`` over Flask on a background thread and
keeps a heartbeat entry for this worker in the Redis hash ``pipeline_workers``.
"""

import json
import logging
import os
import threading
import time
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import redis  # type: ignore
from flask import Flask, jsonify  # type: ignore

from worker.config import HEALTH_CHECK_PORT, HEARTBEAT_INTERVAL

logger = logging.getLogger(__name__)

WORKERS_KEY = "pipeline_workers"


class WorkerHealthMonitor:
    """Heartbeat and task counters for one stage-worker process."""

    def __init__(self, redis_url: Optional[str], worker_id: Optional[str] = None,
                 health_port: int = HEALTH_CHECK_PORT, heartbeat_interval: int = HEARTBEAT_INTERVAL):
        self.redis_url = redis_url
        self.worker_id = worker_id or self._generate_worker_id()
        self.redis_client = None
        self.health_port = health_port
        self.heartbeat_interval = heartbeat_interval

        self.is_healthy = True
        self.is_shutting_down = False
        self.started_at = datetime.now()
        self.last_heartbeat = datetime.now()
        self.current_task: Optional[str] = None
        self.tasks_processed: Counter = Counter()
        self.tasks_failed: Counter = Counter()

        self.health_app = Flask(__name__)
        self.shutdown_event = threading.Event()
        self.heartbeat_thread = None
        self.health_server = None
        self._setup_health_endpoints()

    def _generate_worker_id(self) -> str:
        hostname = os.getenv("HOSTNAME", "unknown")
        return f"worker-{hostname}-{os.getpid()}-{int(time.time())}"

    def _setup_health_endpoints(self):
        @self.health_app.route('/health')
        def health_check():
            status = self.get_health_status()
            return jsonify(status), (200 if self.is_healthy else 503)

        @self.health_app.route('/metrics')
        def metrics():
            return jsonify(self.get_worker_metrics())

    # ── redis registry ───────────────────────────────────────────────────────

    def connect_redis(self) -> bool:
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            self.redis_client.ping()
            logger.info("Connected to Redis for health monitoring")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis_client = None
            return False

    def _worker_record(self) -> Dict[str, Any]:
        return {
            'id': self.worker_id,
            'status': 'stopping' if self.is_shutting_down else 'active',
            'health_status': 'healthy' if self.is_healthy else 'unhealthy',
            'started_at': self.started_at.isoformat(),
            'last_seen': self.last_heartbeat.isoformat(),
            'current_task': self.current_task,
            'tasks_processed': sum(self.tasks_processed.values()),
            'tasks_failed': sum(self.tasks_failed.values()),
            'health_check_port': self.health_port,
        }

    def update_heartbeat(self) -> bool:
        if not self.redis_client:
            return False
        try:
            self.last_heartbeat = datetime.now()
            self.redis_client.hset(WORKERS_KEY, self.worker_id, json.dumps(self._worker_record()))
            return True
        except Exception as e:
            logger.error(f"Failed to update heartbeat: {e}")
            return False

    def unregister_worker(self) -> bool:
        if not self.redis_client:
            return False
        try:
            self.redis_client.hdel(WORKERS_KEY, self.worker_id)
            logger.info(f"Worker unregistered: {self.worker_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to unregister worker: {e}")
            return False

    # ── task accounting ──────────────────────────────────────────────────────

    @contextmanager
    def track(self, task_type: str):
        """Record one task run; exceptions are counted and re-raised."""
        self.current_task = task_type
        started = time.monotonic()
        try:
            yield
        except Exception:
            self.tasks_failed[task_type] += 1
            logger.debug(f"{task_type} failed after {time.monotonic() - started:.1f}s")
            raise
        else:
            self.tasks_processed[task_type] += 1
            logger.debug(f"{task_type} completed in {time.monotonic() - started:.1f}s")
        finally:
            self.current_task = None

    def get_health_status(self) -> Dict[str, Any]:
        return {
            'worker_id': self.worker_id,
            'status': 'healthy' if self.is_healthy else 'unhealthy',
            'last_heartbeat': self.last_heartbeat.isoformat(),
            'current_task': self.current_task,
            'is_shutting_down': self.is_shutting_down,
            'uptime_seconds': (datetime.now() - self.started_at).total_seconds(),
        }

    def get_worker_metrics(self) -> Dict[str, Any]:
        processed = sum(self.tasks_processed.values())
        failed = sum(self.tasks_failed.values())
        return {
            'worker_id': self.worker_id,
            'tasks_processed': dict(self.tasks_processed),
            'tasks_failed': dict(self.tasks_failed),
            'success_rate': processed / (processed + failed) if (processed + failed) > 0 else 0,
            'uptime_seconds': (datetime.now() - self.started_at).total_seconds(),
        }

    # ── lifecycle ────────────────────────────────────────────────────────────

    def start_heartbeat_thread(self):
        def heartbeat_loop():
            while not self.shutdown_event.is_set():
                self.update_heartbeat()
                self.shutdown_event.wait(self.heartbeat_interval)

        self.heartbeat_thread = threading.Thread(target=heartbeat_loop, daemon=True)
        self.heartbeat_thread.start()

    def start_health_server(self):
        def run_server():
            try:
                self.health_app.run(
                    host='0.0.0.0',
                    port=self.health_port,
                    debug=False,
                    use_reloader=False,
                    threaded=True
                )
            except Exception as e:
                logger.error(f"Health server error: {e}")

        self.health_server = threading.Thread(target=run_server, daemon=True)
        self.health_server.start()
        logger.info(f"Health server started on port {self.health_port}")

    def start(self) -> bool:
        """Start the health server and, when Redis is reachable, the heartbeat."""
        self.start_health_server()
        if not self.connect_redis():
            logger.warning("Redis unavailable, worker heartbeat disabled")
            return False
        self.update_heartbeat()
        self.start_heartbeat_thread()
        logger.info(f"Health monitor started for worker {self.worker_id}")
        return True

    def stop(self):
        self.is_shutting_down = True
        self.is_healthy = False
        self.update_heartbeat()
        self.shutdown_event.set()
        if self.heartbeat_thread and self.heartbeat_thread.is_alive():
            self.heartbeat_thread.join(timeout=5)
        self.unregister_worker()
        logger.info(f"Health monitor stopped for worker {self.worker_id}")
