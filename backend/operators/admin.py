from django.contrib import admin
from operators.models import Equipment, Operator, PushSubscription


@admin.register(Operator)
class OperatorAdmin(admin.ModelAdmin):
    """Admin panel for managing roadside operators"""

    list_display = [
        "name",
        "phone",
        "is_available",
        "service_radius_km",
        "current_latitude",
        "current_longitude",
        "last_location_update",
    ]

    list_filter = [
        "is_available",
        "equipment",
    ]

    search_fields = [
        "name",
        "phone",
    ]

    readonly_fields = [
        "last_location_update",
    ]

    filter_horizontal = ("equipment",)
    ordering = ("name",)


@admin.register(Equipment)
class EquipmentAdmin(admin.ModelAdmin):
    list_display = ["name", "requires_transport", "created_at"]
    search_fields = ["name"]


@admin.register(PushSubscription)
class PushSubscriptionAdmin(admin.ModelAdmin):
    list_display = ["operator", "endpoint", "is_active", "created_at", "last_used_at"]
    list_filter = ["is_active"]
    search_fields = ["operator__name", "endpoint"]
