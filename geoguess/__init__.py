from flask import Flask
from config.config import Config

from geoguess.logging_config import configure_app_logging
from geoguess.services import init_services


def create_app(config_class=Config):
    """Application factory function"""
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_app_logging(app)
    init_services(app)

    # Register blueprints
    from geoguess.api import api_bp
    from geoguess.routes import health_bp
    app.register_blueprint(api_bp)
    app.register_blueprint(health_bp)

    return app
