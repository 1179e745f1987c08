# financeflow/app_factory.py
import os
from datetime import datetime
import click
from flask import Flask, g, jsonify
from flask_login import LoginManager
from sqlalchemy.exc import OperationalError
from financeflow.init_db import db
from financeflow.errors import register_error_handlers, NotFoundError
from financeflow.logging_config import setup_logging
from financeflow.notifications import notifier
from financeflow.authentication.models import User
from financeflow.authentication.views import promote_admin

def create_app(config_class='financeflow.config.Config'):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logger = setup_logging(timezone=app.config.get('LOG_TIMEZONE'))

    db.init_app(app)
    notifier.init_app(app)

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user_from_token(request):
        # Claims are placed on g by token_required; no cookie sessions
        claims = g.get('token_claims')
        if not claims:
            return None
        return db.session.get(User, claims.get('id'))

    register_error_handlers(app)

    # Import and register blueprints
    from financeflow.authentication.routes import auth_bp as auth_blueprint, admin_bp as admin_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/api/auth')
    app.register_blueprint(admin_blueprint, url_prefix='/api/admin')

    from financeflow.ledger.routes import ledger_bp as ledger_blueprint
    app.register_blueprint(ledger_blueprint, url_prefix='/api')

    @app.route('/api/health')
    def health():
        return jsonify({
            'success': True,
            'message': 'FinanceFlow API is running',
            'timestamp': datetime.utcnow().isoformat()
        })

    @app.cli.command('promote-admin')
    @click.argument('email')
    def promote_admin_command(email):
        """Grant the admin role to the user with EMAIL."""
        try:
            user = promote_admin(email)
        except NotFoundError:
            raise click.ClickException('User not found')
        click.echo(f"User {user.name} ({email}) has been promoted to ADMIN.")

    with app.app_context():
        try:
            os.makedirs(os.path.join(app.config['UPLOAD_FOLDER'], 'avatars'), exist_ok=True)
            db.create_all()
        except OperationalError as e:
            logger.error(f"OperationalError during database initialization: {e}")

    return app
