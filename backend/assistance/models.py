import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone

from operators.models import Equipment, Operator
from services.dispatch.types import OfferStatus, RequestStatus


class AssistanceRequest(models.Model):
    """A customer's roadside-assistance request, searched for round by round"""

    STATUS_CHOICES = [
        (RequestStatus.PENDING.value, 'Pending'),
        (RequestStatus.SEARCHING.value, 'Searching'),
        (RequestStatus.OFFER_RECEIVED.value, 'Offer Received'),
        (RequestStatus.ACCEPTED.value, 'Accepted'),
        (RequestStatus.ON_THE_WAY.value, 'On The Way'),
        (RequestStatus.COMPLETED.value, 'Completed'),
        (RequestStatus.CANCELLED.value, 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Owner contact; also the proof of ownership for accept/cancel
    phone_number = models.CharField(max_length=20)

    # Origin (required) and destination (optional)
    from_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    from_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    to_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    to_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    description = models.TextField(blank=True, default="")
    required_equipment = models.ForeignKey(
        Equipment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='requests'
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=RequestStatus.PENDING.value)

    # Highest expansion round already announced to operators
    last_notified_round = models.PositiveIntegerField(null=True, blank=True)

    # Optimistic concurrency token, bumped on every status write
    version = models.PositiveIntegerField(default=1)

    # Timestamps
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'assistance_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='request_status_created_idx'),
        ]

    def __str__(self):
        return f"Request {self.id} - {self.phone_number} - {self.status}"


class Offer(models.Model):
    """An operator's bid (price + ETA) against one request"""

    STATUS_CHOICES = [
        (OfferStatus.PROPOSED.value, 'Proposed'),
        (OfferStatus.ACCEPTED.value, 'Accepted'),
        (OfferStatus.REJECTED.value, 'Rejected'),
        (OfferStatus.CANCELLED.value, 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    request = models.ForeignKey(
        AssistanceRequest,
        on_delete=models.CASCADE,
        related_name='offers'
    )
    operator = models.ForeignKey(
        Operator,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    price = models.DecimalField(max_digits=10, decimal_places=2)
    estimated_time_minutes = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=OfferStatus.PROPOSED.value)

    created_at = models.DateTimeField(default=timezone.now)
    accepted_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = 'offers'
        ordering = ['price', 'created_at']
        constraints = [
            # Backstop for the single-winner rule
            models.UniqueConstraint(
                fields=['request'],
                condition=Q(status='accepted'),
                name='one_accepted_offer_per_request'
            )
        ]

    def __str__(self):
        return f"Offer {self.id} - Request {self.request_id} -> Operator {self.operator_id} ({self.status})"


class DispatchNotification(models.Model):
    """Ledger of which operators were already told about a request"""

    request = models.ForeignKey(
        AssistanceRequest,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    operator = models.ForeignKey(
        Operator,
        on_delete=models.CASCADE,
        related_name='request_notifications'
    )
    round = models.PositiveIntegerField(default=0)
    sent_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'dispatch_notifications'
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'operator'],
                name='unique_request_operator_notification'
            )
        ]

    def __str__(self):
        return f"Request {self.request_id} -> Operator {self.operator_id} (round {self.round})"
