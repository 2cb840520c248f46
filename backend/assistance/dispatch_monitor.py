"""Starts the dispatch scheduler thread once per server process"""

import logging
import os
from typing import Optional

from django.conf import settings
from django.db import close_old_connections

from services.dispatch import DispatchScheduler

from .wiring import build_scheduler

logger = logging.getLogger(__name__)

_scheduler_instance: Optional[DispatchScheduler] = None


def start_dispatch_scheduler() -> Optional[DispatchScheduler]:
    global _scheduler_instance

    if getattr(settings, "ENABLE_DISPATCH_SCHEDULER", True) is False:
        return None

    # Avoid double-start in Django's autoreload parent process
    run_main = os.environ.get("RUN_MAIN")
    if run_main not in (None, "true"):
        return None

    if _scheduler_instance is None:
        # The loop thread holds its own DB connection; drop it if it went stale
        _scheduler_instance = build_scheduler(on_tick_complete=close_old_connections)
        _scheduler_instance.start()
    return _scheduler_instance


def stop_dispatch_scheduler(timeout: Optional[float] = None):
    global _scheduler_instance

    if _scheduler_instance is not None:
        _scheduler_instance.stop(timeout)
        _scheduler_instance = None
