import asyncio
import logging
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from shopdesk.config import settings as default_settings, Settings
from shopdesk.database import close_db, create_engine, create_session_factory, init_db
from shopdesk.handlers import notifications, realtime, tickets
from shopdesk.middlewares.errors import register_error_handlers
from shopdesk.middlewares.logging import register_request_logging, setup_logging
from shopdesk.services.connections import ConnectionRegistry
from shopdesk.services.email import EmailService
from shopdesk.services.notification_service import NotificationService
from shopdesk.services.ticket_service import TicketService
from shopdesk.services.users import UserDirectory

logger = logging.getLogger(__name__)


async def run_escalation_sweep(app: FastAPI, interval: int) -> None:
    """Периодическая эскалация просроченных открытых тикетов"""
    while True:
        await asyncio.sleep(interval)
        try:
            async with app.state.session_factory() as session:
                await app.state.ticket_service.escalate_stale_tickets(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Ошибка плановой эскалации: {e!r}")


def create_app(settings: Optional[Settings] = None, email_service: Optional[EmailService] = None) -> FastAPI:
    """
    Собирает приложение со своими движком БД, реестром соединений и сервисами
    """
    settings = settings or default_settings

    app = FastAPI(title="Shopdesk Support API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_request_logging(app)
    register_error_handlers(app, development=settings.is_development)

    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    directory = UserDirectory(session_factory)
    registry = ConnectionRegistry(directory, send_timeout=settings.PUSH_SEND_TIMEOUT)
    notification_service = NotificationService(
        session_factory, registry, email_service or EmailService(settings), directory, settings
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.notification_service = notification_service
    app.state.ticket_service = TicketService(notification_service, directory, settings)
    app.state.sweep_task = None

    # Регистрация роутеров
    app.include_router(tickets.router, prefix="/api")
    app.include_router(notifications.router, prefix="/api")
    app.include_router(realtime.router)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "connections": len(registry.active_connections())}

    @app.on_event("startup")
    async def startup_event():
        await init_db(engine)
        if settings.ESCALATION_SWEEP_INTERVAL > 0:
            app.state.sweep_task = asyncio.create_task(
                run_escalation_sweep(app, settings.ESCALATION_SWEEP_INTERVAL)
            )
        logger.info("Сервис запущен")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Начало процесса завершения работы...")

        try:
            # Останавливаем плановую эскалацию
            sweep_task = app.state.sweep_task
            if sweep_task:
                sweep_task.cancel()
                try:
                    await sweep_task
                except asyncio.CancelledError:
                    pass

            # Закрываем соединения
            await registry.close()
            await close_db(engine)

            logger.info("Завершение работы выполнено успешно")
        except Exception as e:
            logger.error(f"Ошибка при завершении работы: {e}")

    return app


setup_logging(default_settings.LOG_LEVEL, default_settings.LOG_FILE)
app = create_app()
