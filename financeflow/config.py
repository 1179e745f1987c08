# financeflow/config.py
import os
import binascii

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', binascii.hexlify(os.urandom(24)).decode())

    APP_ENV = os.environ.get('APP_ENV', 'development')

    BASE_DIR = os.path.abspath(os.path.dirname(__file__))

    DATABASE_PATH = os.path.join(BASE_DIR, 'financeflow.db')

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', f'sqlite:///{DATABASE_PATH}')

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET = os.environ.get('JWT_SECRET', 'financeflow-secret-key-change-it-in-prod')
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRY_HOURS = 24

    OTP_EXPIRY_MINUTES = 10
    RESET_TOKEN_EXPIRY_HOURS = 1

    # pbkdf2:<hash>:<iterations>; fewer iterations trade margin for latency
    PASSWORD_HASH_METHOD = os.environ.get('PASSWORD_HASH_METHOD', 'pbkdf2:sha256:600000')

    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:5173')

    BREVO_API_KEY = os.environ.get('BREVO_API_KEY')
    MAIL_SENDER_EMAIL = os.environ.get('MAIL_SENDER_EMAIL', 'no-reply@financeflow.app')
    MAIL_SENDER_NAME = os.environ.get('MAIL_SENDER_NAME', 'FinanceFlow')
    MAIL_ASYNC = True

    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024

    LOG_TIMEZONE = os.environ.get('LOG_TIMEZONE', 'Asia/Kolkata')


class TestConfig(Config):
    TESTING = True
    APP_ENV = 'test'
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET = 'test-jwt-secret'
    PASSWORD_HASH_METHOD = 'pbkdf2:sha256:1000'
    BREVO_API_KEY = None
    MAIL_ASYNC = False
