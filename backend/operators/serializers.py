from rest_framework import serializers

from operators.models import Equipment, Operator, PushSubscription


class EquipmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Equipment
        fields = ["id", "name", "description", "requires_transport"]


class OperatorSerializer(serializers.ModelSerializer):
    """
    Public operator card (shown to customers looking for nearby help)
    """
    equipment = EquipmentSerializer(many=True, read_only=True)
    latitude = serializers.FloatField(source="current_latitude", read_only=True)
    longitude = serializers.FloatField(source="current_longitude", read_only=True)

    class Meta:
        model = Operator
        fields = [
            "id",
            "name",
            "phone",
            "vehicle_type",
            "is_available",
            "latitude",
            "longitude",
            "service_radius_km",
            "equipment",
            "last_location_update",
        ]
        read_only_fields = fields


class AvailabilitySerializer(serializers.Serializer):
    """
    Serializer for toggling operator availability.
    """
    is_available = serializers.BooleanField()


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating operator GPS location.
    """
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-90, max_value=90)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-180, max_value=180)


class EquipmentUpdateSerializer(serializers.Serializer):
    equipment_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=True)


class PushSubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PushSubscription
        fields = ["id", "endpoint", "p256dh_key", "auth_key", "is_active", "created_at", "last_used_at"]
        read_only_fields = ["id", "is_active", "created_at", "last_used_at"]
        # Uniqueness is per (operator, endpoint) and handled as an upsert
        validators = []


class PushSubscriptionRemoveSerializer(serializers.Serializer):
    endpoint = serializers.URLField(max_length=500)


class NearbyQuerySerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    radius = serializers.FloatField(min_value=0, required=False)
