import sys
import signal
import logging

from shopdesk.main import app

logger = logging.getLogger(__name__)

def handle_exit(signum, frame):
    logger.info("Получен сигнал завершения работы")
    sys.exit(0)

if __name__ == "__main__":
    import uvicorn

    # Регистрируем обработчики сигналов
    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    # Запускаем с помощью uvicorn напрямую
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        use_colors=True,
        loop="asyncio",
        ws="websockets"
    )
