from django.urls import path
from . import views

app_name = 'assistance'

urlpatterns = [
    # Customer request APIs
    path('requests/', views.create_request, name='create-request'),
    path('requests/<str:request_id>/', views.get_request, name='get-request'),
    path('requests/<str:request_id>/cancel/', views.cancel_request, name='cancel-request'),
    path('requests/<str:request_id>/offers/', views.list_request_offers, name='request-offers'),

    # Offer APIs
    path('offers/', views.submit_offer, name='submit-offer'),
    path('offers/<str:offer_id>/accept/', views.accept_offer, name='accept-offer'),
    path('offers/<str:offer_id>/on-the-way/', views.mark_on_the_way, name='offer-on-the-way'),
    path('offers/<str:offer_id>/complete/', views.complete_offer, name='complete-offer'),
]
