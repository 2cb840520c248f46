from django.urls import path
from .views import (
    EquipmentListView,
    NearbyOperatorsView,
    OperatorAvailabilityView,
    OperatorAvailableRequestsView,
    OperatorEquipmentView,
    OperatorLocationView,
    OperatorPushSubscriptionView,
)

urlpatterns = [
    path("operators/", NearbyOperatorsView.as_view(), name="operators-nearby"),
    path("operators/<str:operator_id>/available-requests/", OperatorAvailableRequestsView.as_view(),
         name="operator-available-requests"),
    path("operators/<str:operator_id>/location/", OperatorLocationView.as_view(), name="operator-location"),
    path("operators/<str:operator_id>/availability/", OperatorAvailabilityView.as_view(),
         name="operator-availability"),
    path("operators/<str:operator_id>/equipment/", OperatorEquipmentView.as_view(), name="operator-equipment"),
    path("operators/<str:operator_id>/push-subscriptions/", OperatorPushSubscriptionView.as_view(),
         name="operator-push-subscriptions"),
    path("equipment/", EquipmentListView.as_view(), name="equipment-list"),
]
