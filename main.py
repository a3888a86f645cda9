# main.py
"""
Single Database Multi-Tenant School Fee Management Service
JSON API with session-cookie authentication and per-school scoping
"""

import os
import sys
import logging
from flask import Flask, jsonify
from flask_login import LoginManager

# Ensure project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# --- local modules ---
from config import config as config_by_name
from db_single import get_session, init_database
from models import User
from init_db import run_on_startup
from cli_commands import register_cli_commands


def create_app(config_name=None) -> Flask:
    """Create the application for the named configuration (FLASK_CONFIG or development)"""
    config_name = config_name or os.environ.get('FLASK_CONFIG', 'default')
    config_class = config_by_name[config_name]
    config = config_class()

    app = Flask(__name__, static_folder="static")
    app.config.from_object(config_class)
    app.json.sort_keys = False

    # Logging
    logging.basicConfig(
        level=logging.DEBUG if app.config.get('DEBUG') else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    logger = logging.getLogger(__name__)

    # DB init
    init_database(config.get_database_uri(), config)
    if not run_on_startup(config):
        logger.warning("Database initialization had issues! The application may not work correctly.")

    # Flask-Login
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            t = user_id.split("_")
            s = get_session()
            try:
                if t[0] == "admin" and len(t) == 2:
                    user = s.query(User).filter_by(id=int(t[1]), school_id=None).first()
                elif t[0] == "school" and len(t) == 3:
                    user = s.query(User).filter_by(id=int(t[2]), school_id=int(t[1])).first()
                else:
                    return None
                return user if user and user.is_active else None
            finally:
                s.close()
        except Exception as e:
            logger.error(f"user_loader error: {e}")
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # CLI
    register_cli_commands(app)

    # Blueprints
    from api_routes import create_api_blueprint
    from admin_routes_single import create_superadmin_blueprint

    app.register_blueprint(create_api_blueprint())
    logger.info("✅ API blueprint registered")
    app.register_blueprint(create_superadmin_blueprint())
    logger.info("✅ Superadmin blueprint registered")

    @app.route("/_healthz")
    def healthz():
        return jsonify({'status': 'ok'})

    @app.errorhandler(404)
    def nf(_):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(_):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def too_large(_):
        return jsonify({'error': 'Uploaded file is too large'}), 413

    @app.errorhandler(500)
    def ie(_):
        return jsonify({'error': 'Internal server error'}), 500

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
