"""
Stores App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import StoreViewSet, ProductViewSet, CartViewSet, FavoriteViewSet, ReviewViewSet

router = DefaultRouter()
router.register(r'stores', StoreViewSet, basename='store')
router.register(r'products', ProductViewSet, basename='product')
router.register(r'cart', CartViewSet, basename='cart')
router.register(r'favorites', FavoriteViewSet, basename='favorite')
router.register(r'reviews', ReviewViewSet, basename='review')

urlpatterns = [
    path('', include(router.urls)),
]
