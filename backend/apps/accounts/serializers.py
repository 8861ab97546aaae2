from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from backend.core.validators import validate_wallet_address

from .models import User


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(
        write_only=True,
        required=True,
        validators=[validate_password],
        style={'input_type': 'password'}
    )
    password2 = serializers.CharField(
        write_only=True,
        required=True,
        style={'input_type': 'password'}
    )
    referral_code = serializers.CharField(write_only=True, required=False, allow_blank=True)

    class Meta:
        model = User
        fields = [
            'email', 'password', 'password2', 'first_name', 'last_name',
            'phone', 'referral_code',
        ]
        extra_kwargs = {
            'email': {'required': True},
            'first_name': {'required': True},
            'last_name': {'required': True}
        }

    def validate_referral_code(self, value):
        if not value:
            return None
        try:
            return User.objects.get(referral_code=value.strip().upper(), is_active=True)
        except User.DoesNotExist:
            raise serializers.ValidationError("Unknown referral code.")

    def validate(self, attrs):
        if attrs['password'] != attrs['password2']:
            raise serializers.ValidationError({
                "password": "Password fields didn't match."
            })

        if User.objects.filter(email__iexact=attrs['email']).exists():
            raise serializers.ValidationError({
                "email": "A user with this email already exists."
            })

        return attrs

    def create(self, validated_data):
        validated_data.pop('password2')
        return User.objects.create_user(
            email=validated_data['email'],
            password=validated_data['password'],
            first_name=validated_data.get('first_name', ''),
            last_name=validated_data.get('last_name', ''),
            phone=validated_data.get('phone', ''),
            referred_by=validated_data.get('referral_code'),
        )


class UserSerializer(serializers.ModelSerializer):
    referred_by = serializers.SlugRelatedField(slug_field='referral_code', read_only=True)
    wallet_address = serializers.CharField(
        required=False,
        allow_blank=True,
        validators=[validate_wallet_address]
    )

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'phone', 'wallet_address',
            'referral_code', 'referred_by', 'role', 'date_joined',
        ]
        read_only_fields = ['id', 'email', 'referral_code', 'referred_by', 'role', 'date_joined']
