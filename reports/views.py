"""
REPORTS App - Dashboard and Export Endpoints
"""

import logging

from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.models import User, UserRole
from core.permissions import IsDriver, IsMerchantOrAdmin, IsPlatformAdmin
from .services import ReportService

logger = logging.getLogger(__name__)


class ReportPeriodSerializer(serializers.Serializer):
    """?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD, both optional."""

    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, data):
        start, end = data.get('start_date'), data.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError("start_date must be on or before end_date")
        return data


def _period(request):
    serializer = ReportPeriodSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data.get('start_date'), serializer.validated_data.get('end_date')


def _target_user(request, param: str, role: str):
    """Admins may report on anyone via ?<param>=<uuid>; others get themselves."""
    target_id = request.query_params.get(param)
    if target_id and request.user.is_platform_admin:
        return get_object_or_404(User, pk=target_id, role=role)
    return request.user


class MerchantDashboardView(APIView):
    """GET /api/reports/merchant/"""

    permission_classes = [IsMerchantOrAdmin]

    def get(self, request):
        start, end = _period(request)
        merchant = _target_user(request, 'merchant_id', UserRole.MERCHANT)
        if merchant.role != UserRole.MERCHANT:
            return Response({'error': 'merchant_id is required for admins'}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ReportService.merchant_dashboard(merchant, start, end))


class MerchantOrdersExportView(APIView):
    """GET /api/reports/merchant/orders.csv"""

    permission_classes = [IsMerchantOrAdmin]

    def get(self, request):
        start, end = _period(request)
        merchant = _target_user(request, 'merchant_id', UserRole.MERCHANT)
        if merchant.role != UserRole.MERCHANT:
            return Response({'error': 'merchant_id is required for admins'}, status=status.HTTP_400_BAD_REQUEST)

        content = ReportService.merchant_orders_csv(merchant, start, end)
        response = HttpResponse(content, content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="partsrunner_orders.csv"'
        return response


class DriverPerformanceView(APIView):
    """GET /api/reports/driver/ for the logged-in driver."""

    permission_classes = [IsDriver]

    def get(self, request):
        start, end = _period(request)
        return Response(ReportService.driver_performance(request.user, start, end))


class AdminDriverPerformanceView(APIView):
    """GET /api/reports/drivers/<uuid>/"""

    permission_classes = [IsPlatformAdmin]

    def get(self, request, pk):
        start, end = _period(request)
        driver = get_object_or_404(User, pk=pk, role=UserRole.DRIVER)
        return Response(ReportService.driver_performance(driver, start, end))


class PlatformStatsView(APIView):
    """GET /api/reports/platform/"""

    permission_classes = [IsPlatformAdmin]

    def get(self, request):
        start, end = _period(request)
        return Response(ReportService.platform_stats(start, end))
