import logging

from rest_framework import generics, permissions, status
from rest_framework.response import Response

from .models import User
from .serializers import UserRegistrationSerializer, UserSerializer

logger = logging.getLogger(__name__)


class UserRegistrationView(generics.CreateAPIView):
    """User registration endpoint. An optional referral code links the new account to its upline."""
    serializer_class = UserRegistrationSerializer
    queryset = User.objects.all()
    permission_classes = [permissions.AllowAny]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info("Registered user %s (referred_by=%s)", user.id, user.referred_by_id)
        return Response({
            'id': str(user.id),
            'email': user.email,
            'referral_code': user.referral_code,
            'referred_by': user.referred_by.referral_code if user.referred_by else None,
            'message': 'User registered successfully.',
        }, status=status.HTTP_201_CREATED)


class CurrentUserView(generics.RetrieveUpdateAPIView):
    serializer_class = UserSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ['get', 'patch']

    def get_object(self):
        return self.request.user
