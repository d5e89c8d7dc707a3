import logging
import os

import pytz
from flask import Flask, current_app

from extensions import db
from config import DevConfig, ProdConfig
from logging_setup import setup_logger


logger = logging.getLogger("clinic_desk.app")


def _log_dispatch(event, payload):
    # The UI opens the link; the server only records that it was requested.
    message = payload.get("message")
    if message is not None:
        logger.info(f"[dispatch] Requested send to {message.destination} for appointment={message.appointment_id}")


def create_app(config_object=None) -> Flask:
    """Initialize Flask app with storage backend, record store and API."""
    app = Flask(__name__)

    if config_object is not None:
        app.config.from_object(config_object)
    elif os.getenv("FLASK_ENV") == "production":
        app.config.from_object(ProdConfig)
    else:
        app.config.from_object(DevConfig)

    if not app.config.get("TESTING"):
        setup_logger(app.config.get("LOG_DIR", "logs"))

    db.init_app(app)

    # Import models so SQLAlchemy registers tables.
    with app.app_context():
        from clinic_desk.models.stored_record import StoredRecord  # noqa: F401
        db.create_all()

        from clinic_desk.routes.api import api_bp

        app.register_blueprint(api_bp)

    from clinic_desk.services import events
    from clinic_desk.services.record_store import RecordStore
    from clinic_desk.services.storage import backend_from_config

    store = RecordStore(
        backend_from_config(app),
        tz=pytz.timezone(app.config.get("CLINIC_TIMEZONE", "UTC")),
        key_prefix=app.config.get("STORAGE_KEY_PREFIX", "os_"),
    )
    store.load()
    store.subscribe(events.DISPATCH_REQUESTED, _log_dispatch)
    app.extensions["record_store"] = store

    return app


def get_store():
    return current_app.extensions["record_store"]
