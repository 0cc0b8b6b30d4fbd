"""Celery application for background invoice parsing.

Run a worker with:
    celery -A celery_app worker -Q parsing --concurrency=4
"""

import os

from celery import Celery
from dotenv import load_dotenv

load_dotenv()

PARSING_QUEUE = os.getenv("PARSING_QUEUE", "parsing")

celery_app = Celery(
    "invoice_parsing",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
    include=["tasks.parsing_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_routes={"tasks.parsing_tasks.*": {"queue": PARSING_QUEUE}},
    # A parse can hold a worker for minutes; don't let one worker hoard jobs
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    result_expires=3600,
)
