from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'needs'

# Router for ViewSets (categories first so the path is not read as a need id)
router = DefaultRouter()
router.register(r'needs/categories', views.CategoryViewSet, basename='category')
router.register(r'needs', views.NeedViewSet, basename='need')
router.register(r'offers', views.OfferViewSet, basename='offer')

urlpatterns = [
    # Need ViewSet routes
    # GET    /api/needs/                        - Browse needs (active by default)
    # POST   /api/needs/                        - Post a need
    # GET    /api/needs/{id}/                   - Need details
    # PATCH  /api/needs/{id}/                   - Edit active need (owner)

    # Custom need actions
    # POST   /api/needs/{id}/cancel/            - Cancel need
    # POST   /api/needs/{id}/complete/          - Confirm delivery (owner)
    # GET    /api/needs/{id}/offers/            - Offers on the need
    # GET    /api/needs/{id}/offer_stats/       - Offer statistics (owner)
    # POST   /api/needs/{id}/accept_offer/      - Accept offer, reject the rest (owner)
    # POST   /api/needs/{id}/reject_offer/      - Reject one offer (owner)
    # GET    /api/needs/categories/             - Active categories

    # Offer ViewSet routes
    # GET    /api/offers/                       - Current user's offers
    # POST   /api/offers/                       - Submit offer
    # GET    /api/offers/{id}/                  - Offer details
    # PATCH  /api/offers/{id}/                  - Revise pending offer (provider)
    # POST   /api/offers/{id}/withdraw/         - Withdraw pending offer (provider)

    path('', include(router.urls)),
]
