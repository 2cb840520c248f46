import logging

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from common.utils.responses import error_response
from services.exceptions import DispatchError

from .serializers import (
    OfferCreateSerializer,
    OfferSerializer,
    OperatorActionSerializer,
    PhoneNumberSerializer,
    RequestCreateSerializer,
    RequestSerializer,
)
from .wiring import get_offer_manager, get_request_service

logger = logging.getLogger(__name__)


# ==================== Customer Request APIs ====================

@api_view(['POST'])
def create_request(request):
    """Create a new help request (customer taps "Get help")"""
    serializer = RequestCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        help_request = get_request_service().create_request(**serializer.validated_data)
    except DispatchError as exc:
        return error_response(exc)

    return Response({
        **RequestSerializer(help_request).data,
        'message': 'Searching for nearby operators...',
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
def get_request(request, request_id):
    """
    Get one request (POLLING ENDPOINT)

    The customer app polls this with ?phone_number= until the
    realtime channel delivers an update.
    """
    phone_number = request.query_params.get('phone_number', '')
    if not phone_number:
        return Response({'error': 'phone_number is required', 'code': 'validation_error'},
                        status=status.HTTP_400_BAD_REQUEST)

    try:
        help_request = get_request_service().get_request_for_owner(request_id, phone_number)
    except DispatchError as exc:
        return error_response(exc)

    return Response(RequestSerializer(help_request).data)


@api_view(['PUT'])
def cancel_request(request, request_id):
    """Cancel a request that is still searching for an operator"""
    serializer = PhoneNumberSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        help_request = get_request_service().cancel_request(
            request_id, serializer.validated_data['phone_number']
        )
    except DispatchError as exc:
        return error_response(exc)

    return Response({
        'success': True,
        'message': 'Request cancelled successfully',
        'request': RequestSerializer(help_request).data,
    })


@api_view(['GET'])
def list_request_offers(request, request_id):
    """Proposed offers for a request, cheapest first"""
    try:
        offers = get_request_service().list_proposed_offers(request_id)
    except DispatchError as exc:
        return error_response(exc)

    return Response(OfferSerializer(offers, many=True).data)


# ==================== Offer APIs ====================

@api_view(['POST'])
def submit_offer(request):
    """Operator submits a price/ETA offer for a request"""
    serializer = OfferCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        result = get_offer_manager().submit_offer(
            data['request_id'],
            data['operator_id'],
            data['price'],
            data.get('estimated_time_minutes'),
        )
    except DispatchError as exc:
        return error_response(exc)

    return Response({
        'success': True,
        'message': result.message,
        'offer': OfferSerializer(result.offer).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
def accept_offer(request, offer_id):
    """Customer accepts one offer; all competing offers are rejected"""
    serializer = PhoneNumberSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = get_offer_manager().accept_offer(offer_id, serializer.validated_data['phone_number'])
    except DispatchError as exc:
        return error_response(exc)

    return Response({
        'success': True,
        'message': result.message,
        'offer': OfferSerializer(result.offer).data,
        'request': RequestSerializer(result.request).data,
    })


def _progress_offer(request, offer_id, action):
    serializer = OperatorActionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = action(offer_id, serializer.validated_data['operator_id'])
    except DispatchError as exc:
        return error_response(exc)

    return Response({
        'success': True,
        'message': result.message,
        'request': RequestSerializer(result.request).data,
    })


@api_view(['POST'])
def mark_on_the_way(request, offer_id):
    """Operator of the accepted offer is driving to the customer"""
    return _progress_offer(request, offer_id, get_offer_manager().mark_on_the_way)


@api_view(['POST'])
def complete_offer(request, offer_id):
    """Operator of the accepted offer finished the job"""
    return _progress_offer(request, offer_id, get_offer_manager().complete)
