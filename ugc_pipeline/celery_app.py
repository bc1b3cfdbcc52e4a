"""
Celery application configuration.

Two work queues: "pipeline" for planning, composites and assembly, and
"veo" for everything that calls Veo. Run the veo worker with
--concurrency=1 so the request spacing holds across the whole queue.
"""
from celery import Celery
from kombu import Queue

from .config import config

celery_app = Celery(
    "ugc_pipeline",
    broker=config.broker_url,
    backend=config.result_backend,
    include=["ugc_pipeline.orchestration.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,

    worker_prefetch_multiplier=1,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=86400,
    result_extended=True,

    task_queues=(
        Queue("default", routing_key="default"),
        Queue("pipeline", routing_key="pipeline.#"),
        Queue("veo", routing_key="veo.#"),
    ),
    task_default_queue="default",
    task_default_exchange="tasks",
    task_default_routing_key="default",

    task_routes={
        "pipeline.generate_clips": {"queue": "veo"},
        "pipeline.generate_single_veo_clip": {"queue": "veo"},
        "pipeline.generate_animation": {"queue": "veo"},
        "pipeline.*": {"queue": "pipeline"},
    },
)

celery_app.conf.broker_transport_options = {
    "visibility_timeout": 43200,
    "socket_timeout": 30,
    "socket_connect_timeout": 30,
}
