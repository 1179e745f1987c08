# financeflow/decorators.py
from functools import wraps
from flask import g, request
from flask_login import current_user
from jose import JWTError
from financeflow.authentication.views import decode_token
from financeflow.errors import UnauthorizedError, ForbiddenError
from financeflow.logging_config import setup_logging

logger = setup_logging()


def token_required(view):
    """Require `Authorization: Bearer <token>` and expose the claims on `g.token_claims`."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        header = request.headers.get('Authorization')
        if not header:
            raise UnauthorizedError('No token provided')

        parts = header.split(' ')
        if len(parts) < 2 or not parts[1]:
            raise UnauthorizedError('Invalid token format')

        try:
            g.token_claims = decode_token(parts[1])
        except JWTError as e:
            logger.warning(f"Rejected bearer token: {e}")
            raise ForbiddenError('Invalid or expired token')

        return view(*args, **kwargs)
    return wrapper


def admin_required(view):
    """Stack under token_required; identity must already be established."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if 'token_claims' not in g:
            raise RuntimeError('admin_required must be applied after token_required')

        if not current_user.is_authenticated or not current_user.is_admin:
            logger.warning(f"Non-admin access attempt by user {g.token_claims.get('id')}")
            raise ForbiddenError('Admin access required')

        return view(*args, **kwargs)
    return wrapper
