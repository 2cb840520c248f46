from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response

from assistance.serializers import RequestSerializer
from assistance.wiring import get_repository
from common.utils.responses import error_response
from services.exceptions import DispatchError

from operators import services
from operators.serializers import (
    AvailabilitySerializer,
    EquipmentSerializer,
    EquipmentUpdateSerializer,
    LocationUpdateSerializer,
    NearbyQuerySerializer,
    OperatorSerializer,
    PushSubscriptionRemoveSerializer,
    PushSubscriptionSerializer,
)


class OperatorDetailMixin:
    """Resolves <operator_id> and turns service errors into responses"""

    def handle_exception(self, exc):
        if isinstance(exc, DispatchError):
            return error_response(exc)
        return super().handle_exception(exc)


class NearbyOperatorsView(OperatorDetailMixin, APIView):

    def get(self, request):
        serializer = NearbyQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        nearby = services.find_nearby_operators(data["lat"], data["lng"], data.get("radius"))

        results = []
        for operator, distance in nearby:
            results.append({
                **OperatorSerializer(operator).data,
                "distance": round(distance, 1),
            })
        return Response({"operators": results, "count": len(results)})


class OperatorAvailableRequestsView(OperatorDetailMixin, APIView):

    def get(self, request, operator_id):
        matches = services.available_requests_for_operator(operator_id, get_repository())

        requests = []
        for help_request, distance in matches:
            requests.append({
                **RequestSerializer(help_request).data,
                "distance": round(distance, 1),
            })
        return Response({"requests": requests, "count": len(requests)})


class OperatorLocationView(OperatorDetailMixin, APIView):

    def get(self, request, operator_id):
        operator = services.get_operator(operator_id)
        return Response({
            "latitude": float(operator.current_latitude) if operator.has_location else None,
            "longitude": float(operator.current_longitude) if operator.has_location else None,
            "last_updated": operator.last_location_update,
            "is_available": operator.is_available,
        })

    def put(self, request, operator_id):
        operator = services.get_operator(operator_id)

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]

        services.update_operator_location(operator, lat, lon)

        return Response({
            "message": "Location updated",
            "latitude": float(lat),
            "longitude": float(lon),
            "is_available": operator.is_available,
        })


class OperatorAvailabilityView(OperatorDetailMixin, APIView):

    def put(self, request, operator_id):
        operator = services.get_operator(operator_id)

        serializer = AvailabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        is_available = serializer.validated_data["is_available"]

        services.set_operator_availability(operator, is_available)

        return Response({
            "message": "Availability updated",
            "is_available": is_available,
        })


class OperatorEquipmentView(OperatorDetailMixin, APIView):

    def get(self, request, operator_id):
        operator = services.get_operator(operator_id)
        return Response(EquipmentSerializer(operator.equipment.order_by("name"), many=True).data)

    def put(self, request, operator_id):
        operator = services.get_operator(operator_id)

        serializer = EquipmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        equipment = services.replace_operator_equipment(operator, serializer.validated_data["equipment_ids"])
        return Response(EquipmentSerializer(equipment, many=True).data)


class OperatorPushSubscriptionView(OperatorDetailMixin, APIView):

    def post(self, request, operator_id):
        operator = services.get_operator(operator_id)

        serializer = PushSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        subscription = services.register_push_subscription(
            operator, data["endpoint"], data["p256dh_key"], data["auth_key"]
        )
        return Response(PushSubscriptionSerializer(subscription).data, status=status.HTTP_201_CREATED)

    def delete(self, request, operator_id):
        operator = services.get_operator(operator_id)

        serializer = PushSubscriptionRemoveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if not services.remove_push_subscription(operator, serializer.validated_data["endpoint"]):
            return Response({"error": "Subscription not found", "code": "not_found"},
                            status=status.HTTP_404_NOT_FOUND)
        return Response(status=status.HTTP_204_NO_CONTENT)


class EquipmentListView(APIView):

    def get(self, request):
        return Response(EquipmentSerializer(services.list_equipment(), many=True).data)
