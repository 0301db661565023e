import pytest
from apps.accounts.models import User


# =============================================================================
# User Model Tests
# =============================================================================

@pytest.mark.django_db
class TestUserModel:

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email='Someone@EXAMPLE.com', password='TestPass123!')

        assert user.email == 'Someone@example.com'
        assert user.check_password('TestPass123!')
        assert user.is_guest is False

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError, match='Email is required'):
            User.objects.create_user(email='', password='TestPass123!')

    def test_create_guest(self, guest_user):
        """Guests are active but have no usable password."""
        assert guest_user.is_guest is True
        assert guest_user.is_active is True
        assert guest_user.has_usable_password() is False

    def test_create_superuser(self):
        admin = User.objects.create_superuser(email='admin@example.com', password='TestPass123!')

        assert admin.is_staff is True
        assert admin.is_superuser is True
        assert admin.email_verified is True

    def test_display_name_falls_back_to_email_prefix(self):
        user = User.objects.create_user(email='jane.doe@example.com', password='TestPass123!')
        assert user.get_display_name() == 'jane.doe'

    def test_can_transact(self, user, guest_user, user_inactive):
        assert user.can_transact is True
        assert guest_user.can_transact is False
        assert user_inactive.can_transact is False


# =============================================================================
# Token API Tests
# =============================================================================

@pytest.mark.django_db
class TestTokenAPI:
    """Tests for POST /api/auth/token/"""

    def test_obtain_token(self, api_client, user):
        response = api_client.post('/api/auth/token/', {
            'email': 'testuser@example.com',
            'password': 'TestPass123!',
        }, format='json')

        assert response.status_code == 200
        assert 'access' in response.data
        assert 'refresh' in response.data

    def test_obtain_token_wrong_password(self, api_client, user):
        response = api_client.post('/api/auth/token/', {
            'email': 'testuser@example.com',
            'password': 'wrong',
        }, format='json')

        assert response.status_code == 401

    def test_refresh_token(self, api_client, user):
        obtained = api_client.post('/api/auth/token/', {
            'email': 'testuser@example.com',
            'password': 'TestPass123!',
        }, format='json')

        response = api_client.post('/api/auth/token/refresh/', {
            'refresh': obtained.data['refresh'],
        }, format='json')

        assert response.status_code == 200
        assert 'access' in response.data

    def test_health_check(self, api_client):
        response = api_client.get('/api/health/')

        assert response.status_code == 200
        assert response.json()['status'] == 'ok'

    def test_plain_http_is_served_without_redirect(self, api_client):
        response = api_client.get('/api/health/', secure=False)

        assert response.status_code != 301
        assert response.status_code == 200
