import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol


logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Живой двунаправленный канал (например, starlette WebSocket)"""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class RoleDirectory(Protocol):
    async def get_role_members(self, role: str) -> List[int]: ...


class ConnectionRegistry:
    """
    Соответствие "пользователь -> активное соединение"

    Одно соединение на пользователя: повторное подключение заменяет старое.
    Все операции выполняются в одном event loop, блокировки не нужны.
    Отправка best-effort: отсутствие соединения или ошибка сети не считаются
    ошибкой вызывающего кода.
    """

    def __init__(self, directory: RoleDirectory, send_timeout: float = 5.0):
        self.directory = directory
        self.send_timeout = send_timeout
        self._connections: Dict[int, Connection] = {}

    def register(self, actor_id: int, connection: Connection) -> Optional[Connection]:
        """Регистрирует соединение; возвращает замененное, если оно было"""
        previous = self._connections.get(actor_id)
        self._connections[actor_id] = connection
        if previous is not None and previous is not connection:
            logger.info(f"Пользователь {actor_id} переподключился, старое соединение заменено")
        return previous

    def unregister(self, actor_id: int, connection: Optional[Connection] = None) -> None:
        """
        Удаляет соединение пользователя (идемпотентно)

        Если передан connection, запись удаляется только когда она все еще
        указывает на него: запоздалое отключение не выбивает новое соединение.
        """
        current = self._connections.get(actor_id)
        if current is None:
            return
        if connection is not None and current is not connection:
            return
        del self._connections[actor_id]

    def get(self, actor_id: int) -> Optional[Connection]:
        return self._connections.get(actor_id)

    def is_connected(self, actor_id: int) -> bool:
        return actor_id in self._connections

    def active_connections(self) -> List[int]:
        return list(self._connections.keys())

    async def send(self, actor_id: int, event: str, payload: Any) -> bool:
        """
        Отправляет событие пользователю

        Returns:
            bool: True если кадр ушел в соединение
        """
        connection = self._connections.get(actor_id)
        if connection is None:
            return False

        try:
            await asyncio.wait_for(
                connection.send_json({"event": event, "data": payload}),
                timeout=self.send_timeout,
            )
            return True
        except Exception as e:
            logger.warning(f"Не удалось отправить '{event}' пользователю {actor_id}: {e!r}")
            self.unregister(actor_id, connection)
            return False

    async def broadcast_to_role(self, role: str, event: str, payload: Any) -> int:
        """
        Рассылает событие всем пользователям роли, у которых есть соединение

        Returns:
            int: количество доставленных кадров
        """
        members = await self.directory.get_role_members(role)
        delivered = 0
        for actor_id in members:
            if actor_id not in self._connections:
                continue
            if await self.send(actor_id, event, payload):
                delivered += 1
        return delivered

    async def close(self) -> None:
        """Закрывает все соединения при остановке сервера"""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            try:
                await connection.close(code=1001)
            except Exception as e:
                logger.debug(f"Ошибка при закрытии соединения: {e!r}")
        if connections:
            logger.info(f"Закрыто соединений: {len(connections)}")
