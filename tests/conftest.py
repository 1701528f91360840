import pytest

from app import create_app
from config import TestConfig
from models import db


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    def _register(username='alice', email='alice@example.com', password='secret123'):
        resp = client.post('/api/auth/register', json={
            'username': username,
            'email': email,
            'password': password,
            'full_name': username.title(),
        })
        assert resp.status_code == 201, resp.get_json()
        return {'Authorization': f"Bearer {resp.get_json()['token']}"}
    return _register


@pytest.fixture
def auth(register):
    return register()


@pytest.fixture
def other_auth(register):
    return register('bob', 'bob@example.com')
