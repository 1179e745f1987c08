"""
Shared pytest fixtures
"""
import pytest

from financeflow.app_factory import create_app
from financeflow.config import TestConfig
from financeflow.init_db import db
from financeflow.notifications import notifier
from financeflow.authentication.models import User, LoginHistory
from financeflow.authentication import views as auth_views

USER_AGENT = 'Mozilla/5.0 (X11; Linux x86_64) FinanceFlowTest/1.0'
PASSWORD = 'S3cret!pass'


@pytest.fixture
def app(tmp_path):
    class Config(TestConfig):
        UPLOAD_FOLDER = str(tmp_path / 'uploads')

    app = create_app(Config)
    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    """For calling helpers directly; do not mix with test-client requests."""
    with app.app_context():
        yield app


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Captures outgoing email instead of calling Brevo."""
    sent = []

    def fake_send(to, subject, text, html):
        sent.append({'to': to, 'subject': subject, 'text': text, 'html': html})
        return True

    monkeypatch.setattr(notifier, 'send', fake_send)
    return sent


@pytest.fixture
def create_user(app):
    def _create(name='Asha Rao', email='asha@example.com', password=PASSWORD,
                verified=True, role=None, known_agents=()):
        with app.app_context():
            user = User(
                name=name,
                email=email,
                password=auth_views.hash_password(password),
                is_verified=verified,
                role=role
            )
            db.session.add(user)
            db.session.commit()
            for agent in known_agents:
                db.session.add(LoginHistory(user_id=user.id, ip_address='127.0.0.1', user_agent=agent))
            db.session.commit()
            return user.id
    return _create


@pytest.fixture
def token_for(app):
    def _token(user_id):
        with app.app_context():
            return auth_views.issue_token(db.session.get(User, user_id))
    return _token


@pytest.fixture
def auth_headers(create_user, token_for):
    user_id = create_user()
    return {'Authorization': f'Bearer {token_for(user_id)}'}
