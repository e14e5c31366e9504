import pytest
from fastapi.testclient import TestClient

from clinic_api.core import config
from clinic_api.core.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, is_path_exempt
from clinic_api.core.rate_limit import InMemoryRateLimitStore
from clinic_api.database import get_db
from conftest import RecordingNotifier, auth_headers


@pytest.fixture
def csrf_client(db, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(config, 'CSRF_ENABLED', True)
    from clinic_api.main import create_app

    app = create_app(rate_limit_store=InMemoryRateLimitStore(), notifier=RecordingNotifier())

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.mark.parametrize(
    ('path', 'exempt'),
    [
        ('/api/payments/esewa/success', True),
        ('/api/payments/esewa/failure', True),
        ('/api/auth/login', False),
        ('/api/auth/csrf-token', False),
        ('/api/payments/esewa/success-page', False),
        ('/api/appointments', False),
        ('/api/payments/esewa/initiate', False),
    ],
)
def test_is_path_exempt(path: str, exempt: bool) -> None:
    assert is_path_exempt(path) is exempt


def test_state_changing_request_without_token_is_rejected(csrf_client, clinic) -> None:
    response = csrf_client.post('/api/appointments', json={}, headers=auth_headers(clinic.patient))

    assert response.status_code == 403
    assert response.json() == {'success': False, 'message': 'CSRF token missing'}


def test_mismatched_token_is_rejected(csrf_client, clinic) -> None:
    csrf_client.cookies.set(CSRF_COOKIE_NAME, 'cookie-value')

    response = csrf_client.post(
        '/api/appointments',
        json={},
        headers={**auth_headers(clinic.patient), CSRF_HEADER_NAME: 'header-value'},
    )

    assert response.status_code == 403
    assert response.json()['message'] == 'Invalid CSRF token'


def test_token_from_csrf_endpoint_is_accepted(csrf_client, clinic) -> None:
    token = csrf_client.get('/api/auth/csrf-token').json()['data']['csrfToken']

    assert csrf_client.cookies.get(CSRF_COOKIE_NAME) == token

    response = csrf_client.post(
        '/api/appointments',
        json={'doctorId': clinic.doctor.id, 'serviceId': clinic.service.id, 'scheduledAt': '2030-01-07T10:00:00Z'},
        headers={**auth_headers(clinic.patient), CSRF_HEADER_NAME: token},
    )

    assert response.status_code == 201


def test_gateway_callbacks_skip_csrf(csrf_client) -> None:
    response = csrf_client.post('/api/payments/esewa/failure', data={}, follow_redirects=False)

    assert response.status_code == 302
