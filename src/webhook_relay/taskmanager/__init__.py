"""Task manager: background job processing and cron scheduling.

Provides ``TaskManager`` for periodic maintenance of the delivery queue:
- Stale lease reclamation (crashed workers)
- Expired secret cleanup (grace periods that ended)
- Retention sweeps for delivery attempts and audit entries
- Metrics calculation (queue depth for Prometheus gauges)
"""

from __future__ import annotations

from webhook_relay.taskmanager.manager import CronJob, JobState, TaskManager

__all__ = ["CronJob", "JobState", "TaskManager"]
