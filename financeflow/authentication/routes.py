# financeflow/authentication/routes.py
import os
import secrets
import time
from flask import Blueprint, current_app, g, request
from flask_login import current_user
from werkzeug.utils import secure_filename
from financeflow.decorators import token_required, admin_required
from financeflow.errors import ValidationError, NotFoundError
from financeflow.logging_config import setup_logging
from financeflow.responses import success_response
from financeflow.authentication import views


auth_bp = Blueprint('auth', __name__)
admin_bp = Blueprint('admin', __name__)

# Setup logging
logger = setup_logging()


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def _client_ip():
    return request.headers.get('X-Forwarded-For', request.remote_addr)


@auth_bp.route('/signup', methods=['POST'])
def signup():
    data = _json_body()
    views.signup_user(data.get('name'), data.get('email'), data.get('password'))
    return success_response(
        message='Signup successful! Please check your email to verify your account.',
        status=201
    )

@auth_bp.route('/verify-email', methods=['GET', 'POST'])
def verify_email():
    token = request.args.get('token') or _json_body().get('token')
    views.verify_email(token)
    return success_response(message='Email verified successfully. You can now log in.')

@auth_bp.route('/login', methods=['POST'])
def login():
    data = _json_body()
    session = views.login_user_with_device_check(
        data.get('email'),
        data.get('password'),
        _client_ip(),
        request.headers.get('User-Agent')
    )
    if session is None:
        return success_response(
            message='New device detected. A verification code has been sent to your email.',
            status=202,
            requiresOtp=True
        )
    return success_response(data=session, message='Login successful')

@auth_bp.route('/verify-otp', methods=['POST'])
def verify_otp():
    data = _json_body()
    session = views.confirm_otp(
        data.get('email'),
        data.get('otp'),
        _client_ip(),
        request.headers.get('User-Agent')
    )
    return success_response(data=session, message='OTP verified successfully')

@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    views.request_password_reset(_json_body().get('email'))
    return success_response(message='If that email is registered, a reset link has been sent.')

@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    data = _json_body()
    views.reset_password(data.get('token'), data.get('password'))
    return success_response(message='Password reset successfully.')

@auth_bp.route('/me', methods=['GET'])
@token_required
def get_me():
    if not current_user.is_authenticated:
        raise NotFoundError('User not found')
    return success_response(data=current_user.to_public_dict())

@auth_bp.route('/profile', methods=['PUT'])
@token_required
def update_profile():
    user = views.update_profile(g.token_claims['id'], _json_body())
    return success_response(data=user.to_public_dict(), message='Profile updated successfully')

@auth_bp.route('/avatar', methods=['POST'])
@token_required
def upload_avatar():
    upload = request.files.get('avatar')
    if upload is None or not upload.filename:
        raise ValidationError('No image uploaded')
    if not (upload.mimetype or '').startswith('image/'):
        raise ValidationError('Only images are allowed')

    extension = os.path.splitext(secure_filename(upload.filename))[1]
    filename = f"avatar-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"
    upload.save(os.path.join(current_app.config['UPLOAD_FOLDER'], 'avatars', filename))

    user = views.set_avatar(g.token_claims['id'], f"/uploads/avatars/{filename}")
    logger.info(f"Avatar updated for user {user.id}.")
    return success_response(data={'avatar': user.avatar, 'user': user.to_public_dict()},
                            message='Avatar uploaded successfully')


@admin_bp.route('/users', methods=['GET'])
@token_required
@admin_required
def list_users():
    users = views.list_users_with_last_login()
    logger.info("Admin user listed all users.")
    return success_response(data=users)

@admin_bp.route('/users/<int:user_id>', methods=['DELETE'])
@token_required
@admin_required
def delete_user(user_id):
    views.delete_user(g.token_claims['id'], user_id)
    return success_response(message='User deleted successfully.')
