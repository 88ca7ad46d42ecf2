"""Event attendance service application entrypoint."""
from __future__ import annotations

import atexit
import logging

from flask import Flask

from attendance_service.config import get_config
from attendance_service.database import init_engine
from attendance_service.logging_config import configure_logging
from attendance_service.routes import register_blueprints
from attendance_service.routes.dependencies import cleanup_services
from attendance_service.routes.utils import error_response, service_error_response
from attendance_service.services.errors import ServiceError
from attendance_service.services.scheduler import ReconciliationScheduler

logger = logging.getLogger(__name__)

app = Flask(__name__)
_APP_CONFIGURED = False


def create_app() -> Flask:
    global _APP_CONFIGURED
    if _APP_CONFIGURED:
        return app

    configure_logging()
    init_engine()
    register_blueprints(app)
    app.teardown_appcontext(cleanup_services)
    register_error_handlers(app)
    _start_scheduler(app)
    _APP_CONFIGURED = True
    return app


@app.get("/health")
def health():
    return {"status": "ok", "service": "event-attendance-service"}


def register_error_handlers(flask_app: Flask) -> None:
    @flask_app.errorhandler(ServiceError)
    def handle_service_error(e: ServiceError):
        if e.details:
            logger.info("%s: %s %s", e.code, e.message, e.details)
        return service_error_response(e)

    @flask_app.errorhandler(404)
    def handle_404(e):
        return error_response(404, "Ressource introuvable.")

    @flask_app.errorhandler(405)
    def handle_405(e):
        return error_response(405, "Méthode non autorisée pour cette ressource.")

    @flask_app.errorhandler(500)
    def handle_500(e):
        original = getattr(e, "original_exception", None)
        if original is not None:
            logger.error("Unhandled error", exc_info=original)
        return error_response(500, "Erreur interne. On respire, on relance.")


def _start_scheduler(flask_app: Flask) -> None:
    config = get_config()
    if not config.scheduler.enabled:
        return
    scheduler = ReconciliationScheduler(config)
    scheduler.start()
    flask_app.extensions["reconciliation_scheduler"] = scheduler
    atexit.register(scheduler.shutdown)


create_app()


if __name__ == "__main__":
    app.run(debug=True, port=5003)
