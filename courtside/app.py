import logging
import os

from flask import Flask, jsonify

from shared.errors import ErrorKind, TournamentError
from .config import config
from .event_publisher import EventPublisher
from .models import db
from .services import build_services
from .stores import Stores, memory_stores

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.CAPACITY_EXCEEDED: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.INSUFFICIENT_PARTICIPANTS: 422,
    ErrorKind.UNSUPPORTED_FORMAT: 422,
    ErrorKind.PERSISTENCE_FAILURE: 503,
}


def create_app(config_name: str = None, stores: Stores = None, events: EventPublisher = None, rng=None) -> Flask:
    """Application factory for the courtside API."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)

    if stores is None:
        if app.config['STORE_BACKEND'] == 'memory':
            stores = memory_stores()
        else:
            from .stores.sql import sql_stores
            with app.app_context():
                db.create_all()
            stores = sql_stores()

    if events is None:
        if app.config['PUBLISH_EVENTS']:
            events = EventPublisher.from_url(app.config['REDIS_URL'])
        else:
            events = EventPublisher()

    # Store services on app for access in routes
    app.services = build_services(stores, events=events, rng=rng)

    register_error_handlers(app)
    register_health_check(app)

    from .routes import matches, tournaments, users
    app.register_blueprint(users.bp)
    app.register_blueprint(tournaments.bp)
    app.register_blueprint(matches.bp)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(TournamentError)
    def handle_tournament_error(e: TournamentError):
        status = HTTP_STATUS.get(e.kind, 400)
        if status >= 500:
            logger.error(f"Request failed: {e.message}")
        return jsonify(e.to_dict()), status

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': 'Resource not found', 'kind': ErrorKind.NOT_FOUND.value}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': 'Method not allowed', 'kind': ErrorKind.VALIDATION.value}), 405


def register_health_check(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        checks = {}

        if app.config['STORE_BACKEND'] != 'memory':
            try:
                db.session.execute(db.text('SELECT 1'))
                checks['database'] = 'connected'
            except Exception as e:
                logger.error(f"Database health check failed: {e}")
                checks['database'] = 'disconnected'

        redis_client = app.services.events.redis
        if redis_client is not None:
            try:
                redis_client.ping()
                checks['redis'] = 'connected'
            except Exception as e:
                logger.warning(f"Redis health check failed: {e}")
                checks['redis'] = 'disconnected'

        # redis is advisory; only the database decides health
        healthy = checks.get('database', 'connected') == 'connected'
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'service': 'courtside',
            **checks
        }), 200 if healthy else 503
