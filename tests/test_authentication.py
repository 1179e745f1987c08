"""
Signup, verification, device-trust login, OTP step-up and profile tests
"""
import io
import re
from datetime import datetime, timedelta

import pytest
from sib_api_v3_sdk.rest import ApiException

from financeflow.init_db import db
from financeflow.notifications import EmailNotifier
from financeflow.authentication.models import User, LoginHistory
from conftest import USER_AGENT, PASSWORD


def login(client, email='asha@example.com', password=PASSWORD, agent=USER_AGENT):
    return client.post('/api/auth/login', json={'email': email, 'password': password},
                       headers={'User-Agent': agent})


def otp_from(outbox):
    return re.search(r'\b(\d{6})\b', outbox[-1]['text']).group(1)


def get_user(app, email='asha@example.com'):
    with app.app_context():
        user = User.query.filter_by(email=email).first()
        db.session.expunge(user)
        return user


class TestSignup:

    def test_signup_creates_unverified_user_without_token(self, app, client, outbox):
        response = client.post('/api/auth/signup', json={
            'name': 'Asha Rao', 'email': 'asha@example.com', 'password': PASSWORD
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['success'] is True
        assert 'token' not in body and 'data' not in body

        user = get_user(app)
        assert user.is_verified is False
        assert user.password != PASSWORD
        assert user.verification_token
        assert outbox[-1]['to'] == 'asha@example.com'
        assert user.verification_token in outbox[-1]['text']

    @pytest.mark.parametrize('payload', [
        {'email': 'asha@example.com', 'password': PASSWORD},
        {'name': 'Asha', 'password': PASSWORD},
        {'name': 'Asha', 'email': 'asha@example.com'},
        {'name': 'Asha', 'email': 'not-an-email', 'password': PASSWORD},
        {'name': 'Asha', 'email': 'asha@example', 'password': PASSWORD},
        {'name': 'Asha', 'email': 42, 'password': PASSWORD},
        {'name': 'Asha', 'email': ['asha@example.com'], 'password': PASSWORD},
        {'name': 'Asha', 'email': 'asha@example.com', 'password': 123456},
    ])
    def test_signup_rejects_invalid_input(self, client, payload):
        response = client.post('/api/auth/signup', json=payload)

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

    def test_signup_rejects_duplicate_email(self, client, create_user):
        create_user()

        response = client.post('/api/auth/signup', json={
            'name': 'Other', 'email': 'asha@example.com', 'password': PASSWORD
        })

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'DUPLICATE_EMAIL'

    def test_login_before_verification_is_rejected(self, client):
        client.post('/api/auth/signup', json={
            'name': 'Asha Rao', 'email': 'asha@example.com', 'password': PASSWORD
        })

        response = login(client)

        assert response.status_code == 403
        assert response.get_json()['error']['code'] == 'NOT_VERIFIED'

    def test_verify_email_link_marks_user_verified(self, app, client):
        client.post('/api/auth/signup', json={
            'name': 'Asha Rao', 'email': 'asha@example.com', 'password': PASSWORD
        })
        token = get_user(app).verification_token

        response = client.get(f'/api/auth/verify-email?token={token}')

        assert response.status_code == 200
        user = get_user(app)
        assert user.is_verified is True
        assert user.verification_token is None

        again = client.get(f'/api/auth/verify-email?token={token}')
        assert again.status_code == 400


class TestLogin:

    def test_unknown_email_and_wrong_password_look_identical(self, client, create_user):
        create_user(known_agents=[USER_AGENT])

        unknown = login(client, email='nobody@example.com')
        wrong = login(client, password='wrong-password')

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.get_json() == wrong.get_json()
        assert unknown.get_json()['error']['code'] == 'AUTH_ERROR'

    def test_missing_fields(self, client):
        response = client.post('/api/auth/login', json={'email': 'asha@example.com'})

        assert response.status_code == 400

    def test_non_string_credentials(self, client):
        response = client.post('/api/auth/login', json={'email': ['asha@example.com'], 'password': PASSWORD})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

    def test_first_login_requires_otp(self, app, client, create_user, outbox):
        create_user()

        response = login(client)

        assert response.status_code == 202
        body = response.get_json()
        assert body['requiresOtp'] is True
        assert 'data' not in body
        assert re.search(r'\b\d{6}\b', outbox[-1]['text'])

        user = get_user(app)
        assert user.otp is not None
        assert user.otp_expiry > datetime.utcnow() + timedelta(minutes=9)

    def test_known_device_logs_in_directly(self, app, client, create_user):
        user_id = create_user(known_agents=[USER_AGENT])

        response = login(client)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['token']
        assert data['user']['id'] == user_id
        assert data['user']['email'] == 'asha@example.com'
        with app.app_context():
            assert LoginHistory.query.filter_by(user_id=user_id).count() == 2

    def test_otp_flow_trusts_device_for_next_login(self, app, client, create_user, outbox):
        user_id = create_user()

        assert login(client).status_code == 202
        otp = otp_from(outbox)

        verified = client.post('/api/auth/verify-otp', json={'email': 'asha@example.com', 'otp': otp},
                               headers={'User-Agent': USER_AGENT})
        assert verified.status_code == 200
        assert verified.get_json()['data']['token']

        with app.app_context():
            assert LoginHistory.query.filter_by(user_id=user_id, user_agent=USER_AGENT).count() == 1

        again = login(client)
        assert again.status_code == 200
        assert again.get_json()['data']['token']

        other_device = login(client, agent='Another Browser/2.0')
        assert other_device.status_code == 202

    def test_otp_also_completes_email_verification(self, app, client, create_user, outbox):
        create_user(verified=False)
        with app.app_context():
            from financeflow.authentication import views
            user = User.query.filter_by(email='asha@example.com').first()
            views.save_otp(user, '123456')

        response = client.post('/api/auth/verify-otp', json={'email': 'asha@example.com', 'otp': '123456'},
                               headers={'User-Agent': USER_AGENT})

        assert response.status_code == 200
        assert get_user(app).is_verified is True

    def test_otp_is_single_use(self, app, client, create_user, outbox):
        create_user()
        login(client)
        otp = otp_from(outbox)
        payload = {'email': 'asha@example.com', 'otp': otp}

        first = client.post('/api/auth/verify-otp', json=payload, headers={'User-Agent': USER_AGENT})
        second = client.post('/api/auth/verify-otp', json=payload, headers={'User-Agent': USER_AGENT})

        assert first.status_code == 200
        assert second.status_code == 400
        user = get_user(app)
        assert user.otp is None and user.otp_expiry is None

    def test_expired_otp_is_rejected(self, app, client, create_user, outbox):
        create_user()
        login(client)
        otp = otp_from(outbox)
        with app.app_context():
            user = User.query.filter_by(email='asha@example.com').first()
            user.otp_expiry = datetime.utcnow() - timedelta(seconds=1)
            db.session.commit()

        response = client.post('/api/auth/verify-otp', json={'email': 'asha@example.com', 'otp': otp},
                               headers={'User-Agent': USER_AGENT})

        assert response.status_code == 400
        assert response.get_json()['error']['message'] == 'Invalid or expired OTP'

    def test_wrong_otp_is_rejected(self, client, create_user, outbox):
        create_user()
        login(client)
        wrong = '000000' if otp_from(outbox) != '000000' else '111111'

        response = client.post('/api/auth/verify-otp', json={'email': 'asha@example.com', 'otp': wrong})

        assert response.status_code == 400

    def test_verify_otp_for_unknown_user(self, client):
        response = client.post('/api/auth/verify-otp', json={'email': 'ghost@example.com', 'otp': '123456'})

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_FOUND'

    def test_generated_otp_is_six_digits(self, app_ctx):
        from financeflow.authentication.views import generate_otp

        for _ in range(50):
            otp = generate_otp()
            assert len(otp) == 6
            assert 100000 <= int(otp) <= 999999


class TestPasswordReset:

    def test_forgot_password_does_not_reveal_accounts(self, app, client, create_user, outbox):
        create_user()

        known = client.post('/api/auth/forgot-password', json={'email': 'asha@example.com'})
        unknown = client.post('/api/auth/forgot-password', json={'email': 'ghost@example.com'})

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()
        assert len(outbox) == 1
        user = get_user(app)
        assert user.reset_token in outbox[0]['text']
        assert user.reset_token_expiry <= datetime.utcnow() + timedelta(hours=1)

    def test_reset_password_with_token(self, app, client, create_user):
        create_user(known_agents=[USER_AGENT])
        client.post('/api/auth/forgot-password', json={'email': 'asha@example.com'})
        token = get_user(app).reset_token

        response = client.post('/api/auth/reset-password', json={'token': token, 'password': 'N3w!password'})

        assert response.status_code == 200
        assert get_user(app).reset_token is None
        assert login(client, password='N3w!password').status_code == 200
        assert login(client).status_code == 401

    def test_expired_reset_token(self, app, client, create_user):
        create_user()
        client.post('/api/auth/forgot-password', json={'email': 'asha@example.com'})
        with app.app_context():
            user = User.query.filter_by(email='asha@example.com').first()
            user.reset_token_expiry = datetime.utcnow() - timedelta(minutes=1)
            token = user.reset_token
            db.session.commit()

        response = client.post('/api/auth/reset-password', json={'token': token, 'password': 'N3w!password'})

        assert response.status_code == 400


class TestProfile:

    def test_me_returns_current_user(self, client, auth_headers):
        response = client.get('/api/auth/me', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['data']['email'] == 'asha@example.com'

    def test_partial_profile_update_keeps_other_fields(self, client, auth_headers):
        response = client.put('/api/auth/profile', json={'phone': '+91 98765 43210'}, headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['phone'] == '+91 98765 43210'
        assert data['name'] == 'Asha Rao'
        assert data['email'] == 'asha@example.com'

    def test_email_change_conflict(self, client, create_user, auth_headers):
        create_user(name='Ravi', email='ravi@example.com')

        response = client.put('/api/auth/profile', json={'email': 'ravi@example.com'}, headers=auth_headers)

        assert response.status_code == 409

    def test_email_change_must_be_a_string(self, client, auth_headers):
        response = client.put('/api/auth/profile', json={'email': 12345}, headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

    def test_password_change_requires_current_password(self, client, auth_headers):
        missing = client.put('/api/auth/profile', json={'newPassword': 'N3w!password'}, headers=auth_headers)
        wrong = client.put('/api/auth/profile', json={'newPassword': 'N3w!password', 'currentPassword': 'nope'},
                           headers=auth_headers)

        assert missing.status_code == 400
        assert wrong.status_code == 401
        assert wrong.get_json()['error']['message'] == 'Incorrect current password'

    def test_password_change(self, app, client, auth_headers):
        response = client.put('/api/auth/profile',
                              json={'newPassword': 'N3w!password', 'currentPassword': PASSWORD},
                              headers=auth_headers)

        assert response.status_code == 200
        assert login(client, password=PASSWORD).status_code == 401
        assert login(client, password='N3w!password').status_code == 202

    def test_avatar_upload(self, app, client, auth_headers):
        response = client.post(
            '/api/auth/avatar',
            data={'avatar': (io.BytesIO(b'\x89PNG\r\n\x1a\nfake'), 'me.png', 'image/png')},
            headers=auth_headers,
            content_type='multipart/form-data'
        )

        assert response.status_code == 200
        avatar = response.get_json()['data']['avatar']
        assert avatar.startswith('/uploads/avatars/avatar-') and avatar.endswith('.png')
        assert get_user(app).avatar == avatar

    def test_avatar_rejects_non_images(self, client, auth_headers):
        response = client.post(
            '/api/auth/avatar',
            data={'avatar': (io.BytesIO(b'%PDF-1.4'), 'doc.pdf', 'application/pdf')},
            headers=auth_headers,
            content_type='multipart/form-data'
        )

        assert response.status_code == 400


class TestEmailNotifier:

    def test_signup_survives_email_failure(self, app, client, monkeypatch):
        from financeflow.notifications import notifier

        def broken_send(to, subject, text, html):
            return False

        monkeypatch.setattr(notifier, 'send', broken_send)

        response = client.post('/api/auth/signup', json={
            'name': 'Asha Rao', 'email': 'asha@example.com', 'password': PASSWORD
        })

        assert response.status_code == 201

    def test_send_swallows_api_errors(self, app, monkeypatch):
        app.config['BREVO_API_KEY'] = 'test-key'
        email_notifier = EmailNotifier(app)

        class FailingApi:
            def __init__(self, api_client):
                pass

            def send_transac_email(self, email):
                raise ApiException(status=500, reason='boom')

        monkeypatch.setattr('sib_api_v3_sdk.TransactionalEmailsApi', FailingApi)

        assert email_notifier.send('asha@example.com', 'Subject', 'text', '<p>html</p>') is False

    def test_send_without_api_key(self, app):
        email_notifier = EmailNotifier(app)

        assert email_notifier.send('asha@example.com', 'Subject', 'text', '<p>html</p>') is False
