from rest_framework import serializers

from services.help_requests.request_lifecycle import MAX_DESCRIPTION_LENGTH, MAX_PHONE_LENGTH


class RequestSerializer(serializers.Serializer):
    """Read-only view of a request snapshot"""
    id = serializers.UUIDField()
    phone_number = serializers.CharField()
    from_latitude = serializers.FloatField(source='origin.latitude')
    from_longitude = serializers.FloatField(source='origin.longitude')
    to_latitude = serializers.SerializerMethodField()
    to_longitude = serializers.SerializerMethodField()
    description = serializers.CharField()
    required_equipment_id = serializers.UUIDField(allow_null=True)
    status = serializers.CharField(source='status.value')
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField(allow_null=True)

    def get_to_latitude(self, obj):
        return obj.destination.latitude if obj.destination else None

    def get_to_longitude(self, obj):
        return obj.destination.longitude if obj.destination else None


class RequestCreateSerializer(serializers.Serializer):
    """Serializer for creating help requests"""
    phone_number = serializers.CharField(max_length=MAX_PHONE_LENGTH)
    from_latitude = serializers.FloatField()
    from_longitude = serializers.FloatField()
    to_latitude = serializers.FloatField(required=False, allow_null=True)
    to_longitude = serializers.FloatField(required=False, allow_null=True)
    description = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=MAX_DESCRIPTION_LENGTH
    )
    required_equipment_id = serializers.UUIDField(required=False, allow_null=True)


class PhoneNumberSerializer(serializers.Serializer):
    """Ownership proof for customer actions (cancel, accept)"""
    phone_number = serializers.CharField(max_length=MAX_PHONE_LENGTH)


class OfferSerializer(serializers.Serializer):
    """Read-only view of an offer snapshot, with the operator's contact"""
    id = serializers.UUIDField()
    request_id = serializers.UUIDField()
    operator_id = serializers.UUIDField()
    operator_name = serializers.CharField()
    operator_phone = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    estimated_time_minutes = serializers.IntegerField(allow_null=True)
    status = serializers.CharField(source='status.value')
    created_at = serializers.DateTimeField()
    accepted_at = serializers.DateTimeField(allow_null=True)


class OfferCreateSerializer(serializers.Serializer):
    """
    Shape-only checks; range checks on price and ETA happen in the
    offer lifecycle manager so every caller gets the same rules.
    """
    request_id = serializers.UUIDField()
    operator_id = serializers.UUIDField()
    price = serializers.DecimalField(max_digits=12, decimal_places=2)
    estimated_time_minutes = serializers.IntegerField(required=False, allow_null=True)


class OperatorActionSerializer(serializers.Serializer):
    """Identifies the operator progressing an accepted offer"""
    operator_id = serializers.UUIDField()
