import os


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Application configuration from environment variables."""

    # Database
    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///motorlog.db')

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.environ.get('FLASK_ENV', 'production')
    DEBUG = FLASK_ENV == 'development'

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Web Push (VAPID) credentials - both keys are required to send anything
    VAPID_PUBLIC_KEY = os.environ.get('VAPID_PUBLIC_KEY')
    VAPID_PRIVATE_KEY = os.environ.get('VAPID_PRIVATE_KEY')
    VAPID_SUBJECT = os.environ.get('VAPID_SUBJECT', 'mailto:admin@example.com')

    # Reminder evaluation
    URGENCY_THRESHOLD_KM = int(os.environ.get('URGENCY_THRESHOLD_KM', 1000))
    URGENCY_THRESHOLD_DAYS = int(os.environ.get('URGENCY_THRESHOLD_DAYS', 15))
    NOTIFICATION_COOLDOWN_HOURS = int(os.environ.get('NOTIFICATION_COOLDOWN_HOURS', 48))

    # Push delivery
    SUBSCRIPTION_CACHE_TTL_SECONDS = int(os.environ.get('SUBSCRIPTION_CACHE_TTL_SECONDS', 600))
    PUSH_MAX_WORKERS = int(os.environ.get('PUSH_MAX_WORKERS', 20))
    PUSH_TTL_SECONDS = int(os.environ.get('PUSH_TTL_SECONDS', 86400))
    PUSH_TIMEOUT_SECONDS = float(os.environ.get('PUSH_TIMEOUT_SECONDS', 10))
    DEFAULT_NOTIFICATION_ICON = os.environ.get('DEFAULT_NOTIFICATION_ICON', '/icon-192x192.png')

    # Scheduling
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED')
    REMINDER_CHECK_INTERVAL_MINUTES = int(os.environ.get('REMINDER_CHECK_INTERVAL_MINUTES', 60))
    CRON_SECRET = os.environ.get('CRON_SECRET')

    # Store reads or writes slower than this are logged
    SLOW_QUERY_THRESHOLD_MS = float(os.environ.get('SLOW_QUERY_THRESHOLD_MS', 250))

    # Rate limiting (read by Flask-Limiter from app.config)
    RATELIMIT_ENABLED = _env_bool('RATELIMIT_ENABLED', True)

    # API Configuration
    FLASK_HOST = os.environ.get('FLASK_HOST', '0.0.0.0')
    FLASK_PORT = int(os.environ.get('FLASK_PORT', 8080))

    @classmethod
    def vapid_configured(cls) -> bool:
        """True when both halves of the VAPID key pair are present."""
        return bool(cls.VAPID_PUBLIC_KEY and cls.VAPID_PRIVATE_KEY)
