from datetime import timedelta
import logging

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from assistance.wiring import get_repository

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Delete completed/cancelled requests (and their offers) older than the retention window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--hours",
            type=int,
            default=None,
            help="Delete requests created more than this many hours ago (default: REQUEST_RETENTION_HOURS).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        hours = options["hours"]
        if hours is None:
            hours = getattr(settings, "REQUEST_RETENTION_HOURS", 24)
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(hours=hours)
        repository = get_repository()

        if dry_run:
            requests_count, offers_count = repository.count_terminal_requests(cutoff)
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {requests_count} requests and {offers_count} offers older than {hours} hours."
                )
            )
            return

        requests_count, offers_count = repository.purge_terminal_requests(cutoff)
        logger.info("Cleaned up %s old requests and %s offers", requests_count, offers_count)
        self.stdout.write(
            self.style.SUCCESS(
                f"Deleted {requests_count} requests and {offers_count} offers older than {hours} hours."
            )
        )
