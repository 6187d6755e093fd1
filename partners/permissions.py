"""
API key permission for the merchant integration API.
"""

from rest_framework_api_key.permissions import BaseHasAPIKey

from core.models import UserRole
from .models import MerchantAPIKey


class HasMerchantAPIKey(BaseHasAPIKey):
    """
    Valid, unrevoked merchant key in `Authorization: Api-Key <key>`.

    Injects `request.merchant` with the key's merchant. Views must only
    touch that merchant's stores and orders.
    """

    model = MerchantAPIKey

    def has_permission(self, request, view):
        raw_key = self.get_key(request)
        if not raw_key:
            return False

        try:
            api_key = self.model.objects.get_from_key(raw_key)
        except self.model.DoesNotExist:
            return False

        merchant = api_key.merchant
        if not merchant.is_active or merchant.role != UserRole.MERCHANT:
            return False

        request.merchant = merchant
        return True
