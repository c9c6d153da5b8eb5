import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(verbose=False, log_dir=None, max_bytes=10485760, backup_count=10):
    """Configure application logging"""

    # Set log level based on verbosity
    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'datavault.log'),
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quiet chatty client libraries
    for name in ('googleapiclient.discovery_cache', 'botocore', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, settings=None, backends=None, cancel_token=None, start_scheduler=False):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('DATAVAULT_ENV', 'production')

    from datavault.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    verbose = app.config.get('DEBUG', False) or bool(settings and settings.verbose)
    configure_logging(
        verbose=verbose,
        log_dir=app.config.get('LOG_DIR'),
        max_bytes=app.config['LOG_FILE_MAX_BYTES'],
        backup_count=app.config['LOG_FILE_BACKUP_COUNT']
    )

    # Ensure required directories exist
    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)

    # Build backup service
    if settings is not None:
        from datavault.service import build_service
        app.extensions['datavault'] = build_service(
            settings,
            app_config=app.config,
            backends=backends,
            cancel_token=cancel_token
        )

    from datavault.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    if start_scheduler and 'datavault' in app.extensions:
        import atexit

        service = app.extensions['datavault']
        service.scheduler.start()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(service.scheduler.stop)
        app.logger.info("Scheduler initialized and started successfully")

    return app
