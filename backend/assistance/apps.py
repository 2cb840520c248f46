"""Assistance app configuration."""

import sys

from django.apps import AppConfig

# Management commands that must not spawn the background loop
_NO_SCHEDULER_COMMANDS = {
    "makemigrations", "migrate", "collectstatic", "shell", "test",
    "run_dispatch_scheduler", "cleanup_old_requests", "createsuperuser",
}


class AssistanceConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'assistance'

    def ready(self):
        command = sys.argv[1] if len(sys.argv) > 1 else ""
        if command in _NO_SCHEDULER_COMMANDS:
            return

        from .dispatch_monitor import start_dispatch_scheduler
        start_dispatch_scheduler()
