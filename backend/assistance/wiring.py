"""Builds the dispatch engine's collaborators from Django settings."""

from django.conf import settings

from common.utils.clock import SystemClock
from realtime.notifications import ChannelsNotifier
from services.dispatch import DispatchConfig, DispatchScheduler
from services.help_requests import RequestService
from services.offers import OfferLifecycleManager

from .repository import DjangoRepository


def get_repository() -> DjangoRepository:
    return DjangoRepository()


def get_notifier() -> ChannelsNotifier:
    return ChannelsNotifier()


def get_config() -> DispatchConfig:
    return DispatchConfig.from_settings(settings)


def get_offer_manager() -> OfferLifecycleManager:
    return OfferLifecycleManager(get_repository(), get_notifier(), SystemClock(), get_config())


def get_request_service() -> RequestService:
    return RequestService(get_repository(), get_notifier(), SystemClock())


def build_scheduler(on_tick_complete=None) -> DispatchScheduler:
    return DispatchScheduler(
        get_repository(),
        get_notifier(),
        clock=SystemClock(),
        config=get_config(),
        on_tick_complete=on_tick_complete,
    )
