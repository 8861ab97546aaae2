from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from backend.apps.accounts.models import User
from backend.tests.factories import UserFactory


class RegistrationTests(APITestCase):

    def setUp(self):
        self.url = reverse('accounts:register')
        self.payload = {
            'email': 'ada@example.com',
            'password': 'a-long-secret-1',
            'password2': 'a-long-secret-1',
            'first_name': 'Ada',
            'last_name': 'Obi',
        }

    def test_register_with_referral_code(self):
        upline = UserFactory()

        response = self.client.post(
            self.url, {**self.payload, 'referral_code': upline.referral_code.lower()}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['referred_by'], upline.referral_code)
        user = User.objects.get(email='ada@example.com')
        self.assertEqual(user.referred_by, upline)
        self.assertTrue(user.referral_code)

    def test_register_without_referral_code(self):
        response = self.client.post(self.url, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(User.objects.get(email='ada@example.com').referred_by)

    def test_unknown_referral_code(self):
        response = self.client.post(self.url, {**self.payload, 'referral_code': 'NOPE1234'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(User.objects.filter(email='ada@example.com').exists())

    def test_password_mismatch(self):
        response = self.client.post(self.url, {**self.payload, 'password2': 'different-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_duplicate_email(self):
        UserFactory(email='ada@example.com')
        response = self.client.post(self.url, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class LoginTests(APITestCase):

    def test_login_returns_tokens(self):
        user = UserFactory()
        response = self.client.post(
            reverse('accounts:login'), {'email': user.email, 'password': 'testpass123'}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_wrong_password(self):
        user = UserFactory()
        response = self.client.post(
            reverse('accounts:login'), {'email': user.email, 'password': 'wrong'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class CurrentUserTests(APITestCase):

    def setUp(self):
        self.user = UserFactory()
        self.client.force_authenticate(self.user)
        self.url = reverse('accounts:me')

    def test_profile(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['email'], self.user.email)
        self.assertEqual(response.data['referral_code'], self.user.referral_code)
        self.assertEqual(response.data['role'], User.Role.USER)

    def test_set_wallet_address(self):
        wallet = '0x' + 'ab' * 20
        response = self.client.patch(self.url, {'wallet_address': wallet}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_address, wallet)

    def test_invalid_wallet_address(self):
        response = self.client.patch(self.url, {'wallet_address': '0x123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_role_is_read_only(self):
        self.client.patch(self.url, {'role': User.Role.ADMIN}, format='json')
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Role.USER)

    def test_requires_authentication(self):
        self.client.force_authenticate(None)
        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_401_UNAUTHORIZED)
