from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'payments'

router = DefaultRouter()
router.register(r'', views.PaymentViewSet, basename='payment')

urlpatterns = [
    # GET    /api/payments/                 - Payments made or received
    # POST   /api/payments/                 - Initialize payment (3-D Secure)
    # GET    /api/payments/{id}/            - Payment details
    # GET    /api/payments/callback/        - 3-D Secure redirect (also POST)
    path('callback/', views.payment_callback, name='payment-callback'),

    path('', include(router.urls)),
]
