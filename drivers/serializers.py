"""
Drivers App Serializers - Applications, Profiles, Documents
"""

from rest_framework import serializers

from .models import (
    ApplicationStatus, DocumentType, DriverApplication, DriverDocument, DriverProfile
)


class DriverApplicationSerializer(serializers.ModelSerializer):
    """Full serializer for DriverApplication model."""

    status_display = serializers.CharField(source='get_status_display', read_only=True)
    applicant_email = serializers.EmailField(source='applicant.email', read_only=True)
    reviewed_by_email = serializers.EmailField(source='reviewed_by.email', read_only=True, default=None)

    class Meta:
        model = DriverApplication
        fields = [
            'id', 'applicant', 'applicant_email',
            'first_name', 'last_name', 'email', 'phone', 'date_of_birth',
            'address', 'city', 'state', 'zip_code',
            'license_number', 'license_state', 'license_expiry', 'has_commercial_license',
            'vehicle_type', 'vehicle_make', 'vehicle_model', 'vehicle_year',
            'license_plate', 'vehicle_color',
            'insurance_company', 'insurance_policy_number', 'insurance_expiry',
            'has_commercial_insurance',
            'years_experience', 'preferred_areas', 'availability', 'max_distance_miles',
            'payout_method', 'cash_app_handle', 'venmo_handle',
            'has_criminal_record', 'criminal_record_details',
            'emergency_contact_name', 'emergency_contact_phone', 'emergency_contact_relationship',
            'status', 'status_display', 'admin_notes', 'reviewed_by_email', 'reviewed_at',
            'created_at', 'updated_at'
        ]
        read_only_fields = [
            'id', 'applicant', 'status', 'admin_notes', 'reviewed_at', 'created_at', 'updated_at'
        ]

    def validate_state(self, value):
        return value.upper()

    def validate_license_state(self, value):
        return value.upper()


class DriverApplicationListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for the admin review queue."""

    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = DriverApplication
        fields = ['id', 'full_name', 'email', 'city', 'state', 'vehicle_type', 'status', 'created_at']


class ApplicationStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ApplicationStatus.choices)
    admin_notes = serializers.CharField()


class DriverProfileSerializer(serializers.ModelSerializer):
    """Serializer for DriverProfile model."""

    email = serializers.EmailField(source='user.email', read_only=True)
    full_name = serializers.CharField(source='user.full_name', read_only=True)
    average_rating = serializers.DecimalField(
        source='user.average_rating', max_digits=3, decimal_places=2, read_only=True
    )
    vehicle_description = serializers.CharField(read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            'id', 'email', 'full_name', 'average_rating',
            'vehicle_type', 'vehicle_make', 'vehicle_model', 'vehicle_year',
            'vehicle_color', 'license_plate', 'vehicle_description',
            'is_online', 'is_available', 'current_latitude', 'current_longitude',
            'last_location_at', 'last_active_at',
            'total_deliveries', 'total_earnings',
            'license_verified', 'insurance_verified', 'background_check_verified',
            'payout_method', 'cash_app_handle', 'venmo_handle', 'max_distance_miles'
        ]
        read_only_fields = [
            'id', 'is_online', 'is_available', 'current_latitude', 'current_longitude',
            'last_location_at', 'last_active_at', 'total_deliveries', 'total_earnings',
            'license_verified', 'insurance_verified', 'background_check_verified'
        ]

    def validate(self, data):
        method = data.get('payout_method', getattr(self.instance, 'payout_method', None))
        cash_app = data.get('cash_app_handle', getattr(self.instance, 'cash_app_handle', ''))
        venmo = data.get('venmo_handle', getattr(self.instance, 'venmo_handle', ''))
        if method == 'cash_app' and not cash_app:
            raise serializers.ValidationError({'cash_app_handle': 'Required for Cash App payouts.'})
        if method == 'venmo' and not venmo:
            raise serializers.ValidationError({'venmo_handle': 'Required for Venmo payouts.'})
        return data


class DriverStatusSerializer(serializers.Serializer):
    is_online = serializers.BooleanField()
    latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)
    longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)


class LocationUpdateSerializer(serializers.Serializer):
    """Serializer for driver location updates."""

    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class DriverDocumentSerializer(serializers.ModelSerializer):
    document_type = serializers.ChoiceField(choices=DocumentType.choices)

    class Meta:
        model = DriverDocument
        fields = ['id', 'document_type', 'file', 'is_verified', 'verified_at', 'uploaded_at']
        read_only_fields = ['id', 'is_verified', 'verified_at', 'uploaded_at']


class EarningsSummarySerializer(serializers.Serializer):
    today = serializers.DecimalField(max_digits=12, decimal_places=2)
    week = serializers.DecimalField(max_digits=12, decimal_places=2)
    month = serializers.DecimalField(max_digits=12, decimal_places=2)
    total = serializers.DecimalField(max_digits=12, decimal_places=2)
    deliveries_today = serializers.IntegerField()
    deliveries_total = serializers.IntegerField()
    average_rating = serializers.DecimalField(max_digits=3, decimal_places=2)
    total_ratings = serializers.IntegerField()
    wallet_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
