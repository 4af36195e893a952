"""Background workers for the generation pipeline."""

from avatarium.workers.task_poller import poll_once, run_task_poller

__all__ = [
    "poll_once",
    "run_task_poller",
]
