"""
Charging Insights - Flask Application

Serves the charging analytics and carbon views over the reconstructed
session store.
"""

import logging
import os

from flask import Flask, Response, jsonify
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

import database
from config import Config
from database import get_db
from exceptions import AggregationError
from extensions import init_cache, limiter
from models import ChargingEvent, ChargingSession, UserStats
from routes import register_blueprints
from utils.error_codes import ErrorCode, StructuredError

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app():
    """Create and configure the Flask app."""
    app = Flask(__name__)
    app.config.from_object(Config)

    if os.environ.get('FLASK_TESTING'):
        app.config['TESTING'] = True
        app.config['RATELIMIT_ENABLED'] = False

    # Cache is disabled in testing mode
    init_cache(app)
    limiter.init_app(app)
    database.init_app(app)
    register_blueprints(app)

    @app.errorhandler(AggregationError)
    def handle_aggregation_error(error):
        structured = StructuredError(
            ErrorCode.E403_AGGREGATION_FAILED,
            error.message,
            exception=error,
            **error.details
        )
        logger.error(str(structured), extra={"structured_error": structured.to_dict()})
        return jsonify(structured.to_response()), 503

    @app.route('/api/status', methods=['GET'])
    def get_status() -> Response:
        """Get system status and store counts."""
        db = get_db()
        try:
            last_event = db.query(func.max(ChargingEvent.event_timestamp)).scalar()
            counts = {
                'events': db.query(func.count(ChargingEvent.id)).scalar(),
                'sessions': db.query(func.count(ChargingSession.id)).scalar(),
                'users': db.query(func.count(UserStats.id)).scalar(),
            }
        except OperationalError as e:
            db.rollback()
            structured = StructuredError(
                ErrorCode.E200_DB_CONNECTION_FAILED,
                "Session store is unreachable",
                exception=e,
                operation='status',
            )
            logger.error(str(structured), extra={"structured_error": structured.to_dict()})
            body = structured.to_response()
            body.update(status='degraded', database='unreachable')
            return jsonify(body), 503

        return jsonify({
            'status': 'online',
            **counts,
            'last_event': last_event.isoformat() if last_event else None,
            'database': 'connected'
        })

    return app


app = create_app()


# ============================================================================
# Main
# ============================================================================

if __name__ == '__main__':
    app.run(host=Config.FLASK_HOST, port=Config.FLASK_PORT, debug=Config.DEBUG)
