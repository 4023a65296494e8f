class ShopdeskError(Exception):
    """Базовое исключение сервиса: ожидаемая ошибка с HTTP-кодом"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class NotFoundError(ShopdeskError):
    """Сущность не найдена"""
    status_code = 404


class ForbiddenError(ShopdeskError):
    """Недостаточно прав"""
    status_code = 403


class InvalidArgumentError(ShopdeskError):
    """Некорректные входные данные"""
    status_code = 400


class UnauthenticatedError(ShopdeskError):
    """Токен отсутствует или недействителен"""
    status_code = 401


class RateLimitedError(ShopdeskError):
    """Превышен лимит операций, нужно повторить позже"""
    status_code = 429


class ConflictError(ShopdeskError):
    status_code = 409


class InternalError(ShopdeskError):
    """Сбой хранилища или транспорта, не связанный с запросом клиента"""
    status_code = 500
