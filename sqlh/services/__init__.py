"""Service package exports."""

from .job_queue import JobQueue, Message, attach_jobs_queue

__all__ = ["JobQueue", "Message", "attach_jobs_queue"]
