# financeflow/authentication/views.py
import re
import secrets
from datetime import datetime, timedelta
from flask import current_app
from jose import jwt
from sqlalchemy import func
from werkzeug.security import generate_password_hash, check_password_hash
from financeflow.init_db import db
from financeflow.authentication.models import User, LoginHistory, ADMIN_ROLE
from financeflow.errors import (
    ValidationError, ConflictError, AuthError, NotVerifiedError, NotFoundError
)
from financeflow.logging_config import setup_logging
from financeflow.notifications import notifier

logger = setup_logging()

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
INVALID_CREDENTIALS = 'Invalid email or password'


def hash_password(password):
    return generate_password_hash(password, method=current_app.config['PASSWORD_HASH_METHOD'])

def password_matches(user, password):
    return check_password_hash(user.password, password)

def get_user_by_email(email):
    return User.query.filter_by(email=email).first()

# Function to generate a 6-digit OTP
def generate_otp():
    return str(secrets.randbelow(900000) + 100000)

# Function to save hashed OTP and its expiry on the user's record
def save_otp(user, otp):
    user.otp = generate_password_hash(str(otp), method=current_app.config['PASSWORD_HASH_METHOD'])
    user.otp_expiry = datetime.utcnow() + timedelta(minutes=current_app.config['OTP_EXPIRY_MINUTES'])
    db.session.commit()

# Function to verify the hashed OTP
def verify_otp(user, otp):
    if not user.otp or not user.otp_expiry:
        return False
    if datetime.utcnow() > user.otp_expiry:
        return False
    return check_password_hash(user.otp, str(otp))

def issue_token(user):
    expires = datetime.utcnow() + timedelta(hours=current_app.config['JWT_EXPIRY_HOURS'])
    claims = {'id': user.id, 'email': user.email, 'exp': expires}
    return jwt.encode(claims, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])

def decode_token(token):
    """Raises jose.JWTError on a bad signature or an expired token."""
    return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[current_app.config['JWT_ALGORITHM']])

def is_known_device(user, user_agent):
    return db.session.query(
        LoginHistory.query.filter_by(user_id=user.id, user_agent=user_agent).exists()
    ).scalar()

def record_login(user, ip_address, user_agent):
    db.session.add(LoginHistory(user_id=user.id, ip_address=ip_address, user_agent=user_agent))
    db.session.commit()

def session_payload(user):
    return {'token': issue_token(user), 'user': user.to_public_dict()}


def send_verification_email(user):
    link = f"{current_app.config['FRONTEND_URL']}/verify-email?token={user.verification_token}"
    notifier.dispatch(
        user.email,
        "Verify your FinanceFlow account",
        f"Hi {user.name},\n\nPlease verify your email address by opening this link:\n{link}",
        f"Dear {user.name},<br>Please verify your email address by clicking "
        f"<a href=\"{link}\">this link</a>.<br><br>Warm Regards,<br>The FinanceFlow Team"
    )

def send_otp_email(user, otp):
    minutes = current_app.config['OTP_EXPIRY_MINUTES']
    notifier.dispatch(
        user.email,
        "Your FinanceFlow login code",
        f"Hi {user.name},\n\nYour login code is {otp}. It is valid for {minutes} minutes.",
        f"Dear {user.name},<br>A sign-in from a new device needs confirmation. Your code is "
        f"<strong>{otp}</strong>. This code is valid for {minutes} minutes.<br><br>Warm Regards,<br>The FinanceFlow Team"
    )

def send_reset_email(user):
    link = f"{current_app.config['FRONTEND_URL']}/reset-password?token={user.reset_token}"
    notifier.dispatch(
        user.email,
        "Reset your FinanceFlow password",
        f"Hi {user.name},\n\nReset your password within the next hour using this link:\n{link}",
        f"Dear {user.name},<br>You can reset your password within the next hour using "
        f"<a href=\"{link}\">this link</a>.<br><br>Warm Regards,<br>The FinanceFlow Team"
    )


def signup_user(name, email, password):
    if not name or not email or not password:
        logger.warning("Signup attempt with missing fields.")
        raise ValidationError('Please provide name, email, and password')

    if not isinstance(password, str):
        raise ValidationError('Password must be a string')

    if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
        logger.warning("Invalid email format during signup.")
        raise ValidationError('Invalid email format')

    if get_user_by_email(email):
        logger.warning(f"Signup attempt with existing email: {email}")
        raise ConflictError('Email already registered', code='DUPLICATE_EMAIL')

    user = User(
        name=name,
        email=email,
        password=hash_password(password),
        is_verified=False,
        verification_token=secrets.token_hex(32)
    )
    db.session.add(user)
    db.session.commit()

    logger.info(f"New user {email} signed up successfully.")
    send_verification_email(user)
    return user

def verify_email(token):
    if not token:
        raise ValidationError('Verification token is required')

    user = User.query.filter_by(verification_token=token).first()
    if not user:
        raise ValidationError('Invalid or already used verification link')

    user.is_verified = True
    user.verification_token = None
    db.session.commit()
    logger.info(f"User {user.email} verified their email address.")
    return user

def login_user_with_device_check(email, password, ip_address, user_agent):
    """Returns a session payload for a known device, or None when an OTP was sent."""
    if not email or not password:
        logger.warning("Login attempt with missing fields.")
        raise ValidationError('Please provide email and password')

    if not isinstance(email, str) or not isinstance(password, str):
        raise ValidationError('Email and password must be strings')

    user = get_user_by_email(email)
    if not user or not password_matches(user, password):
        logger.warning(f"Failed login attempt for email: {email}")
        raise AuthError(INVALID_CREDENTIALS)

    if not user.is_verified:
        logger.warning(f"Login attempt before verification: {email}")
        raise NotVerifiedError('Please verify your email before logging in')

    # A first-ever login has no history either, so it always goes through the OTP step
    if is_known_device(user, user_agent):
        record_login(user, ip_address, user_agent)
        logger.info(f"User {email} logged in successfully.")
        return session_payload(user)

    otp = generate_otp()
    save_otp(user, otp)
    send_otp_email(user, otp)
    logger.info(f"Unrecognised device for {email}; OTP challenge issued.")
    return None

def confirm_otp(email, otp, ip_address, user_agent):
    if not email or not otp:
        raise ValidationError('Email and OTP are required')

    user = get_user_by_email(email)
    if not user:
        raise NotFoundError('User not found')

    if not verify_otp(user, otp):
        logger.warning(f"Invalid or expired OTP presented for {email}")
        raise ValidationError('Invalid or expired OTP')

    user.otp = None
    user.otp_expiry = None
    user.is_verified = True
    db.session.add(LoginHistory(user_id=user.id, ip_address=ip_address, user_agent=user_agent))
    db.session.commit()

    logger.info(f"User {email} completed OTP verification.")
    return session_payload(user)

def request_password_reset(email):
    if not email:
        raise ValidationError('Email is required')

    user = get_user_by_email(email)
    if not user:
        logger.info(f"Password reset requested for unknown email: {email}")
        return

    user.reset_token = secrets.token_hex(32)
    user.reset_token_expiry = datetime.utcnow() + timedelta(hours=current_app.config['RESET_TOKEN_EXPIRY_HOURS'])
    db.session.commit()
    send_reset_email(user)

def reset_password(token, new_password):
    if not token or not new_password:
        raise ValidationError('Token and new password are required')

    user = User.query.filter_by(reset_token=token).first()
    if not user or not user.reset_token_expiry or datetime.utcnow() > user.reset_token_expiry:
        raise ValidationError('Invalid or expired reset token')

    user.password = hash_password(new_password)
    user.reset_token = None
    user.reset_token_expiry = None
    db.session.commit()
    logger.info(f"Password reset completed for {user.email}.")

def update_profile(user_id, data):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError('User not found')

    email = data.get('email') or None
    if email and email != user.email:
        if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
            raise ValidationError('Invalid email format')
        if get_user_by_email(email):
            raise ConflictError('Email already in use', code='DUPLICATE_EMAIL')

    new_password = data.get('newPassword')
    if new_password:
        current_password = data.get('currentPassword')
        if not current_password:
            raise ValidationError('Current password required to change password')
        if not password_matches(user, current_password):
            raise AuthError('Incorrect current password')
        user.password = hash_password(new_password)

    for field in ('name', 'phone', 'avatar'):
        if data.get(field):
            setattr(user, field, data[field])
    if email:
        user.email = email

    db.session.commit()
    logger.info(f"Profile updated for user {user.id}.")
    return user

def set_avatar(user_id, public_path):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError('User not found')
    user.avatar = public_path
    db.session.commit()
    return user


def list_users_with_last_login():
    last_login = (
        db.session.query(LoginHistory.user_id, func.max(LoginHistory.created_at).label('last_login'))
        .group_by(LoginHistory.user_id)
        .subquery()
    )
    rows = (
        db.session.query(User, last_login.c.last_login)
        .outerjoin(last_login, User.id == last_login.c.user_id)
        .order_by(User.created_at.desc())
        .all()
    )
    return [{
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'isVerified': user.is_verified,
        'createdAt': user.created_at.isoformat() if user.created_at else None,
        'lastLogin': last.isoformat() if last else None
    } for user, last in rows]

def delete_user(acting_user_id, user_id):
    if user_id == acting_user_id:
        raise ValidationError('Cannot delete your own admin account.')

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError('User not found')

    db.session.delete(user)
    db.session.commit()
    logger.info(f"User {user_id} deleted by admin {acting_user_id}.")

def promote_admin(email):
    user = get_user_by_email(email)
    if not user:
        raise NotFoundError('User not found')
    user.role = ADMIN_ROLE
    db.session.commit()
    logger.info(f"User '{user.name}' ({email}) promoted to admin.")
    return user
