"""
URL configuration for the marketplace project.

API routes:
    api/auth/       - JWT token obtain / refresh
    api/needs/      - needs, their offers and decisions
    api/offers/     - offers from the provider's side
    api/payments/   - payments and the 3-D Secure callback
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from config.views import health_check

urlpatterns = [
    # Health check
    path('api/health/', health_check, name='health-check'),

    # Admin
    path('admin/', admin.site.urls),

    # API Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='api-schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='api-schema'), name='api-docs'),

    # Authentication
    path('api/auth/', include('apps.accounts.urls')),

    # API endpoints
    path('api/payments/', include('apps.payments.urls')),
    path('api/', include('apps.needs.urls')),
]


# Custom error handlers
handler404 = 'config.views.error_404'
handler500 = 'config.views.error_500'
