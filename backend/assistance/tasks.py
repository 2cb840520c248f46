"""Celery tasks for request-related background processing."""

from datetime import timedelta
import logging

from celery import shared_task
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task
def cleanup_old_requests_task(hours: int = None):
    """
    Delete completed/cancelled requests (and their offers) older than the
    retention window. Meant to be scheduled hourly by celery beat.

    Returns:
        Dict with the number of requests and offers deleted
    """
    from .wiring import get_repository

    hours = hours if hours is not None else getattr(settings, "REQUEST_RETENTION_HOURS", 24)
    cutoff = timezone.now() - timedelta(hours=hours)

    requests_deleted, offers_deleted = get_repository().purge_terminal_requests(cutoff)
    if requests_deleted:
        logger.info(
            "Cleaned up %s old requests and %s offers older than %sh",
            requests_deleted, offers_deleted, hours,
        )
    return {"requests": requests_deleted, "offers": offers_deleted}


@shared_task
def dispatch_tick_task():
    """
    Run one dispatch pass from a celery worker, for deployments that turn the
    in-process scheduler thread off.
    """
    from .wiring import build_scheduler

    summary = build_scheduler().run_once()
    return {
        "scanned": summary.scanned,
        "timed_out": summary.timed_out,
        "operators_notified": summary.operators_notified,
        "conflicts": summary.conflicts,
        "failures": summary.failures,
    }
