"""Flask application factory."""
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from pharmapos.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # State-changing JSON calls send the token (GET /pos/cart) as X-CSRFToken
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Phiên làm việc đã hết hạn. Vui lòng tải lại trang.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for promotions and combos
    from pharmapos.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from pharmapos.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: HTTPS behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Database and data backend
    init_db(app)
    from pharmapos.services.backend_service import init_backend
    init_backend(app)

    # Tenant context before each request
    from pharmapos.middleware import load_tenant_context

    @app.before_request
    def before_request_handler():
        load_tenant_context()

    # Error Handlers
    from pharmapos.exceptions import PosError

    @app.errorhandler(PosError)
    def handle_pos_error(error):
        """Render application exceptions as JSON."""
        if error.status_code >= 500:
            app.logger.error(f"PosError [{error.status_code}] {request.path}: {error.message}")
        else:
            app.logger.warning(f"PosError [{error.status_code}] {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from pharmapos.blueprints.pos import pos_bp
    from pharmapos.blueprints.quotes import quotes_bp
    from pharmapos.blueprints.metrics import metrics_bp

    app.register_blueprint(pos_bp)
    app.register_blueprint(quotes_bp)
    app.register_blueprint(metrics_bp)

    from pharmapos.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"BACKEND_MODE={app.config.get('BACKEND_MODE')}")

    return app
