"""
Routes module for Charging Insights Flask blueprints.
"""

from routes.carbon import carbon_bp
from routes.charging import charging_bp

__all__ = [
    "charging_bp",
    "carbon_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(charging_bp, url_prefix="/api/charging")
    app.register_blueprint(carbon_bp, url_prefix="/api/carbon")
