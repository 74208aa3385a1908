"""
Background Job Queue
Dramatiq-based async task processing
"""
from app.services.jobs.broker import broker
from app.services.jobs.tasks import process_nylas_deltas_task

__all__ = ["broker", "process_nylas_deltas_task"]
