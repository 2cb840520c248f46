import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


def default_service_radius():
    return getattr(settings, "OPERATOR_DEFAULT_SERVICE_RADIUS_KM", 20)


class Equipment(models.Model):
    """A kind of equipment or service an operator can bring (jump starter, tow truck...)"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default="")
    # Informational only: whether the customer's vehicle has to be transported
    requires_transport = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'equipment'
        ordering = ['name']

    def __str__(self):
        return self.name


class Operator(models.Model):
    """Roadside service operator with live location and availability"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=150)
    phone = models.CharField(max_length=20)
    vehicle_type = models.CharField(max_length=50, blank=True, default="")

    # Availability & location (null location means "not dispatchable")
    is_available = models.BooleanField(default=True)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)
    service_radius_km = models.PositiveIntegerField(default=default_service_radius)

    equipment = models.ManyToManyField(Equipment, blank=True, related_name='operators')

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'operators'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.phone})"

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None


class PushSubscription(models.Model):
    """Offline (web push) delivery target registered by an operator's device"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    operator = models.ForeignKey(
        Operator,
        on_delete=models.CASCADE,
        related_name='push_subscriptions'
    )
    endpoint = models.URLField(max_length=500)
    p256dh_key = models.CharField(max_length=200)
    auth_key = models.CharField(max_length=100)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    last_used_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'push_subscriptions'
        constraints = [
            models.UniqueConstraint(
                fields=['operator', 'endpoint'],
                name='unique_operator_push_endpoint'
            )
        ]

    def __str__(self):
        return f"Push subscription {self.id} -> {self.operator_id}"
