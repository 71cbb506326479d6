# flask_app/utils/monitoring.py

from flask import Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models import db


def init_monitoring(app):
    """Register the health check, and the Prometheus scrape endpoint when monitoring is enabled"""

    @app.route(app.config.get("HEALTH_CHECK_ENDPOINT", "/health"))
    def health_check():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            app.logger.error("Health check database query failed", extra={"error": str(exc)})
            return jsonify({"status": "unhealthy", "database": "unavailable"}), 503
        return jsonify(
            {
                "status": "healthy",
                "database": "ok",
                "app": app.config.get("APP_NAME"),
                "version": app.config.get("APP_VERSION"),
            }
        )

    if not app.config.get("MONITORING_ENABLED", False):
        return

    @app.route(app.config.get("METRICS_ENDPOINT", "/metrics"))
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    app.logger.info("Prometheus metrics exposed", extra={"metrics_endpoint": app.config.get("METRICS_ENDPOINT")})
