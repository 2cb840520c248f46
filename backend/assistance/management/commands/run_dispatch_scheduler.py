import logging
import time

from django.core.management.base import BaseCommand
from django.db import close_old_connections

from assistance.wiring import build_scheduler

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Run the dispatch scheduler in the foreground (or a single pass with --once)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single dispatch pass and exit.",
        )

    def handle(self, *args, **options):
        scheduler = build_scheduler(on_tick_complete=close_old_connections)

        if options["once"]:
            summary = scheduler.run_once()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Scanned {summary.scanned} requests: {summary.timed_out} timed out, "
                    f"{summary.operators_notified} operators notified, "
                    f"{summary.conflicts} conflicts, {summary.failures} failures."
                )
            )
            return

        self.stdout.write(self.style.SUCCESS("Dispatch scheduler running. Press Ctrl+C to stop."))
        scheduler.start()
        try:
            while scheduler.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stdout.write("Stopping dispatch scheduler...")
        finally:
            scheduler.stop()
