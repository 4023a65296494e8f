import aiohttp
import logging
from typing import Optional
from shopdesk.config import settings as default_settings, Settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Почтовый API вернул ошибку"""


class EmailService:
    """Отправка писем через HTTP API почтового провайдера"""

    def __init__(self, settings: Settings = default_settings):
        self.api_url = settings.EMAIL_API_URL
        self.sender = settings.EMAIL_FROM
        self.timeout = aiohttp.ClientTimeout(total=settings.EMAIL_TIMEOUT)
        self.headers = {
            "Content-Type": "application/json"
        }
        if settings.EMAIL_API_TOKEN:
            self.headers["Authorization"] = f"Bearer {settings.EMAIL_API_TOKEN}"

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def send(self, to: str, subject: str, html: str) -> Optional[str]:
        """
        Отправляет письмо

        Returns:
            Optional[str]: ID письма у провайдера, None если отправка отключена

        Raises:
            EmailDeliveryError: провайдер ответил ошибкой
        """
        if not self.enabled:
            logger.debug(f"EMAIL_API_URL не задан, письмо для {to} не отправлено")
            return None

        data = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "html": html
        }
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.api_url, json=data, headers=self.headers) as response:
                if not response.ok:
                    body = await response.text()
                    raise EmailDeliveryError(f"Email API responded {response.status}: {body}")
                logger.info(f"Письмо '{subject}' отправлено на {to}")
                try:
                    result = await response.json(content_type=None)
                except ValueError:
                    return ""
                if isinstance(result, dict):
                    return str(result.get("id") or "")
                return ""
