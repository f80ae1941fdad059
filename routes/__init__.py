# Routes package - registers all blueprints with the Flask app

def register_blueprints(app):
    """Register all route blueprints with the Flask app."""
    from .trackers import trackers_bp
    from .mqtt import mqtt_bp
    from .settings import settings_bp

    app.register_blueprint(trackers_bp)
    app.register_blueprint(mqtt_bp)
    app.register_blueprint(settings_bp)
