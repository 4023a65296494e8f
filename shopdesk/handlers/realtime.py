import json
import logging
from typing import Any, Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from shopdesk.exceptions import InvalidArgumentError, ShopdeskError, UnauthenticatedError
from shopdesk.models.models import User
from shopdesk.schemas import TicketCreate, TicketEventUpdate
from shopdesk.services import access
from shopdesk.services.auth import authenticate, extract_bearer_token
from shopdesk.services.ticket_service import parse_status

router = APIRouter()
logger = logging.getLogger(__name__)


def _handshake_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    """Токен из query-параметра token или из заголовка Authorization"""
    if token:
        return token
    authorization = websocket.headers.get("authorization")
    if not authorization:
        return None
    try:
        return extract_bearer_token(authorization)
    except UnauthenticatedError:
        return None


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    Канал push-уведомлений.
    Без валидного токена соединение отклоняется до регистрации.
    """
    app = websocket.app
    registry = app.state.registry

    try:
        async with app.state.session_factory() as session:
            user = await authenticate(session, _handshake_token(websocket, token), app.state.settings)
    except UnauthenticatedError as e:
        logger.warning(f"Отклонено websocket-подключение: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    registry.register(user.id, websocket)
    logger.info(f"Подключен клиент: {user.id}")

    try:
        while True:
            raw = await websocket.receive_text()
            await handle_frame(websocket, user, raw)
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(user.id, websocket)
        logger.info(f"Клиент отключился: {user.id}")


async def handle_frame(websocket: WebSocket, user: User, raw: str) -> None:
    """Разбирает кадр {"event": ..., "data": ...}; ошибки уходят клиенту как ticket_error"""
    try:
        try:
            frame = json.loads(raw)
        except ValueError:
            raise InvalidArgumentError("Malformed frame: expected JSON")
        if not isinstance(frame, dict):
            raise InvalidArgumentError("Malformed frame: expected an object")

        event = frame.get("event")
        data = frame.get("data") or {}
        if event == "create_ticket":
            await _create_ticket(websocket, user, data)
        elif event == "update_ticket":
            await _update_ticket(websocket, user, data)
        else:
            raise InvalidArgumentError(f"Unknown event: {event}")
    except ShopdeskError as e:
        await _send_error(websocket, e.message)
    except ValidationError as e:
        await _send_error(websocket, f"Invalid input data. {e.errors(include_url=False)}")
    except Exception as e:
        logger.exception(f"Ошибка обработки websocket-события пользователя {user.id}: {e}")
        await _send_error(websocket, "Something went very wrong!")


async def _create_ticket(websocket: WebSocket, user: User, data: Any) -> None:
    payload = TicketCreate.model_validate(data)
    service = websocket.app.state.ticket_service
    async with websocket.app.state.session_factory() as session:
        await service.create_ticket(session, user, payload.order_id, payload.initial_message, payload.subject)


async def _update_ticket(websocket: WebSocket, user: User, data: Any) -> None:
    payload = TicketEventUpdate.model_validate(data)
    if payload.content is None and payload.status is None:
        raise InvalidArgumentError("Nothing to update: provide content or status")
    if payload.status is not None:
        # смена статуса только для администратора, до любых изменений тикета
        access.ensure_admin(user)
        parse_status(payload.status)

    service = websocket.app.state.ticket_service
    async with websocket.app.state.session_factory() as session:
        if payload.content is not None:
            await service.append_message(session, payload.ticket_id, payload.content, user)
        if payload.status is not None:
            await service.set_status(
                session, payload.ticket_id, payload.status, user, payload.assigned_staff_id
            )


async def _send_error(websocket: WebSocket, message: str) -> None:
    try:
        await websocket.send_json({"event": "ticket_error", "data": {"message": message}})
    except Exception as e:
        logger.warning(f"Не удалось отправить ticket_error: {e!r}")
