"""
REPORTS App - URL Configuration
"""

from django.urls import path
from . import views

urlpatterns = [
    # Merchant
    path('reports/merchant/',
         views.MerchantDashboardView.as_view(),
         name='report-merchant-dashboard'),
    path('reports/merchant/orders.csv',
         views.MerchantOrdersExportView.as_view(),
         name='report-merchant-orders-csv'),

    # Driver
    path('reports/driver/',
         views.DriverPerformanceView.as_view(),
         name='report-driver-performance'),
    path('reports/drivers/<uuid:pk>/',
         views.AdminDriverPerformanceView.as_view(),
         name='report-admin-driver-performance'),

    # Platform
    path('reports/platform/',
         views.PlatformStatsView.as_view(),
         name='report-platform'),
]
