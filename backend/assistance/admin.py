"""Tells what to show in the Django admin interface for the assistance app"""

from django.contrib import admin
from .models import AssistanceRequest, DispatchNotification, Offer


@admin.register(AssistanceRequest)
class AssistanceRequestAdmin(admin.ModelAdmin):
    """Help request admin"""
    list_display = ['id', 'phone_number', 'status', 'last_notified_round', 'created_at', 'updated_at']
    list_filter = ['status', 'created_at']
    search_fields = ['id', 'phone_number', 'description']
    readonly_fields = ['created_at', 'updated_at', 'last_notified_round', 'version']
    date_hierarchy = 'created_at'


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ("request", "operator", "price", "estimated_time_minutes", "status", "created_at", "accepted_at")
    list_filter = ("status",)
    search_fields = ("request__id", "operator__name")


@admin.register(DispatchNotification)
class DispatchNotificationAdmin(admin.ModelAdmin):
    list_display = ("request", "operator", "round", "sent_at")
    search_fields = ("request__id", "operator__name")
