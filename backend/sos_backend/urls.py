from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # Customer requests and offers (at /api/requests/, /api/offers/)
    path('api/', include('assistance.urls')),

    # Operator self-service and equipment catalogue (at /api/operators/, /api/equipment/)
    path('api/', include('operators.urls')),
]

# Serve media files in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
