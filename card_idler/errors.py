"""
Исключения idler-а.
Транспортные ошибки и ошибки разбора сюда не попадают - адаптеры гасят их сами.
"""


class IdlerError(Exception):
    """Базовое исключение idler-а"""


class SessionError(IdlerError):
    """Ошибка входа или подключения к сессии - фатальна для запуска"""


class ConfigError(IdlerError):
    """Некорректная конфигурация"""
