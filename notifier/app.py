"""
MotorLog Notifier - Flask Application

Checks vehicle service reminders and sends Web Push notifications for the
ones that are due soon or overdue.
"""

import atexit
import logging

from config import Config
from database import init_app as init_database
from database import init_db
from extensions import limiter
from flask import Flask, jsonify
from routes import register_blueprints
from services.scheduler import init_scheduler, shutdown_scheduler
from utils.error_codes import ErrorCode, StructuredError
from werkzeug.exceptions import HTTPException

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)

limiter.init_app(app)
init_database(app)
init_db()
register_blueprints(app)


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    """Log anything a route did not handle and answer with a JSON 500."""
    # Let Flask render its own HTTP errors (404, 405, 429, ...)
    if isinstance(e, HTTPException):
        return e
    error = StructuredError(ErrorCode.E500_INTERNAL_SERVER_ERROR, 'Unhandled error', exception=e)
    logger.exception(str(error))
    return jsonify({'error': 'Internal server error', 'details': str(e)}), 500


def start_scheduler():
    """Start the in-process reminder scheduler when enabled."""
    if not Config.SCHEDULER_ENABLED:
        logger.info('In-process scheduler disabled; expecting external cron trigger')
        return None
    scheduler = init_scheduler()
    atexit.register(shutdown_scheduler)
    return scheduler


start_scheduler()


if __name__ == '__main__':
    app.run(host=Config.FLASK_HOST, port=Config.FLASK_PORT, debug=Config.DEBUG)
