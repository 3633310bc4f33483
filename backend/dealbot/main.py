import logging
import sys

from fastapi import FastAPI

from dealbot.config.settings import settings
from dealbot.database.engine import Base, SessionLocal, engine
from dealbot.database.models.deal_record import DealRecord  # noqa: F401
from dealbot.database.models.reminder_record import ReminderRecord  # noqa: F401
from dealbot.database.models.session_record import SessionRecord  # noqa: F401
from dealbot.database.repositories.deal_repository import DealRepository
from dealbot.database.repositories.reminder_repository import ReminderRepository
from dealbot.database.repositories.session_repository import SessionRepository
from dealbot.errors import StorageUnavailable
from dealbot.middleware.request_logging import log_requests_middleware
from dealbot.routes.reminder_routes import router as reminder_router
from dealbot.routes.whatsapp_routes import router as whatsapp_router
from dealbot.utils.logger import get_logger


def _configure_logging() -> None:
    """Set up a structured, human-readable log format for the whole app.

    Format example::

        2026-10-17 10:33:19 | INFO     | dealbot.services.deal_pipeline:58 | ✅ Cache hit: 3 food deals near Marina Bay
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    # Avoid duplicate handlers if create_app() is called more than once (e.g. tests)
    if not root.handlers:
        root.addHandler(handler)
    else:
        for h in root.handlers:
            h.setFormatter(formatter)

    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _purge_expired(logger: logging.Logger) -> None:
    try:
        with SessionLocal() as db:
            sessions = SessionRepository(db).purge_expired()
            deals = DealRepository(db).purge_expired()
            reminders = ReminderRepository(db).purge_expired()
    except StorageUnavailable as e:
        logger.error("Expired-record purge skipped: %s", e)
        return
    logger.info("Purged expired records — sessions=%d deals=%d reminders=%d", sessions, deals, reminders)


def create_app() -> FastAPI:
    _configure_logging()

    logger = get_logger(__name__)
    logger.info(
        "Starting %s deals bot — region=%s, log_level=%s, db=%s",
        settings.brand_name,
        settings.region,
        settings.log_level.upper(),
        settings.sqlite_url,
    )

    app = FastAPI(title=f"{settings.brand_name} Deals Bot", version="0.1.0")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables verified / created.")
    _purge_expired(logger)

    app.middleware("http")(log_requests_middleware)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(whatsapp_router)
    logger.info("WhatsApp webhook router mounted at /api/whatsapp.")

    app.include_router(reminder_router)
    logger.info("Reminder dispatch router mounted at /api/reminders.")

    return app


app = create_app()
