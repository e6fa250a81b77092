"""
Routes module for the MotorLog notifier Flask blueprints.
"""

from routes.push import push_bp
from routes.reminders import reminders_bp

__all__ = [
    "reminders_bp",
    "push_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(reminders_bp, url_prefix="/api")
    app.register_blueprint(push_bp, url_prefix="/api")
