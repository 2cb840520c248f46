"""
Offline delivery through an HTTP push gateway.

The gateway receives one POST per subscription (endpoint + keys + payload)
and speaks Web Push to the browser. A 404/410 from the gateway means the
browser subscription is gone for good.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.utils import timezone

from operators.models import PushSubscription
from services.dispatch.types import PushResult, PushStatus
from services.exceptions import PermanentSubscriptionError

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = (404, 410)


class PushGatewayClient:
    """Sends offline notifications to every active subscription of an operator."""

    def __init__(self, gateway_url: Optional[str] = None, timeout: Optional[float] = None, session=None):
        self.gateway_url = gateway_url if gateway_url is not None else getattr(settings, "PUSH_GATEWAY_URL", "")
        self.timeout = timeout if timeout is not None else float(getattr(settings, "PUSH_GATEWAY_TIMEOUT_SECONDS", 5))
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.gateway_url)

    def send_to_operator(self, operator_id, payload: Dict[str, Any]) -> List[PushResult]:
        """
        Push `payload` to each active subscription of the operator.

        Args:
            operator_id: Target operator
            payload: JSON-safe notification body

        Returns:
            One PushResult per subscription attempted (empty when push is disabled
            or the operator has no active subscription)
        """
        if not self.enabled:
            logger.debug("Push gateway not configured; skipping offline push for operator %s", operator_id)
            return []

        subscriptions = list(PushSubscription.objects.filter(operator_id=operator_id, is_active=True))
        if not subscriptions:
            logger.debug("No active push subscriptions for operator %s", operator_id)
            return []

        results = []
        for subscription in subscriptions:
            try:
                self._post(subscription, payload)
            except PermanentSubscriptionError as exc:
                logger.info("Push subscription %s is gone (HTTP %s)", subscription.id, exc.http_status)
                results.append(PushResult(PushStatus.INVALID, subscription.id, exc.message))
            except requests.RequestException as exc:
                logger.warning("Push to subscription %s failed: %s", subscription.id, exc)
                results.append(PushResult(PushStatus.TRANSIENT, subscription.id, str(exc)))
            else:
                PushSubscription.objects.filter(pk=subscription.pk).update(last_used_at=timezone.now())
                results.append(PushResult(PushStatus.DELIVERED, subscription.id))
        return results

    def _post(self, subscription: PushSubscription, payload: Dict[str, Any]):
        body = {
            "subscription": {
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh_key, "auth": subscription.auth_key},
            },
            "payload": payload,
        }
        response = self.session.post(self.gateway_url, json=body, timeout=self.timeout)
        if response.status_code in GONE_STATUS_CODES:
            raise PermanentSubscriptionError(
                subscription_id=subscription.id, status_code=response.status_code
            )
        response.raise_for_status()
