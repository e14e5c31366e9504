import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from clinic_api.core import config
from clinic_api.core.errors import StorageUnavailableError


@pytest.fixture
def failing_app(app):
    router = APIRouter()

    @router.get('/boom')
    def boom():
        raise StorageUnavailableError()

    app.include_router(router)
    return app


def test_clinic_errors_use_error_envelope(failing_app) -> None:
    response = TestClient(failing_app).get('/boom')

    assert response.status_code == 503
    assert response.json() == {'success': False, 'message': 'Database unavailable. Please try again later.'}


def test_unknown_route_uses_error_envelope(client) -> None:
    response = client.get('/api/nowhere')

    assert response.status_code == 404
    assert response.json()['success'] is False


def test_health_check(client) -> None:
    assert client.get('/').json() == {'status': 'Clinic Appointments API Running'}


def test_production_requires_real_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()
