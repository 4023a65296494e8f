import logging
from typing import Optional
import jwt
from sqlalchemy.ext.asyncio import AsyncSession
from shopdesk.config import settings as default_settings, Settings
from shopdesk.exceptions import UnauthenticatedError
from shopdesk.models.models import User

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Достает токен из заголовка Authorization: Bearer <token>

    Raises:
        UnauthenticatedError: заголовок отсутствует или имеет неверный формат
    """
    if not authorization:
        raise UnauthenticatedError("Missing Authorization header")
    if not authorization.startswith("Bearer "):
        raise UnauthenticatedError("Bad Authorization format (expected Bearer token)")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthenticatedError("Missing token after Bearer")
    return token


def decode_token(token: Optional[str], settings: Settings = default_settings) -> int:
    """
    Проверяет подпись токена и возвращает ID пользователя

    Args:
        token: JWT, выданный сервисом авторизации
        settings: Настройки с секретом и алгоритмом

    Returns:
        int: ID пользователя из claim "id" (или "sub")
    """
    if not token:
        raise UnauthenticatedError("Authentication token is missing")

    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Your token has expired! Please log in again.")
    except jwt.InvalidTokenError:
        raise UnauthenticatedError("Invalid token. Please log in again!")

    user_id = payload.get("id", payload.get("sub"))
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise UnauthenticatedError("Invalid token. Please log in again!")


async def authenticate(session: AsyncSession, token: Optional[str], settings: Settings = default_settings) -> User:
    """Возвращает пользователя по токену; неизвестный или неактивный пользователь не проходит"""
    user_id = decode_token(token, settings)
    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Токен для неизвестного или неактивного пользователя {user_id}")
        raise UnauthenticatedError("User not found")
    return user
