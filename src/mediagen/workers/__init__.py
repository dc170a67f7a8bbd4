"""Background workers for async processing tasks."""

from mediagen.workers.media_job_worker import run_media_job_worker

__all__ = ["run_media_job_worker"]
