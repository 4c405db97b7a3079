"""
Узкий интерфейс к сессии Steam.
Ядро idler-а видит только эти операции: подключение, объявление активных игр
и поток событий. Реальный протокол спрятан в steam_session.py.
"""
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence


@dataclass
class AccountSession:
    """Состояние аккаунта, которым владеет ConnectionSupervisor"""
    steam_id: Optional[int] = None
    logged_on: bool = False
    web_cookies: Dict[str, str] = field(default_factory=dict)
    _web_ready: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def has_web_session(self) -> bool:
        return bool(self.web_cookies)

    def cookie_header(self) -> str:
        """Заголовок Cookie для запросов к сообществу"""
        return '; '.join(f"{name}={value}" for name, value in self.web_cookies.items())

    def set_web_cookies(self, cookies: Dict[str, str]):
        self.web_cookies = dict(cookies or {})
        if self.web_cookies:
            self._web_ready.set()

    def wait_for_web_session(self, timeout: float) -> bool:
        """
        Ожидание web-cookies с ограничением по времени

        Args:
            timeout (float): Максимальное время ожидания в секундах

        Returns:
            bool: True если cookies получены
        """
        if self.web_cookies:
            return True
        return self._web_ready.wait(timeout)


class SessionListener(Protocol):
    """Получатель событий сессии"""

    def handle_logged_on(self, steam_id: int) -> None: ...

    def handle_disconnected(self, code: Optional[int] = None) -> None: ...

    def handle_error(self, error: Exception) -> None: ...

    def handle_web_session(self, cookies: Dict[str, str]) -> None: ...


class SessionClient(Protocol):
    """
    Всё, что ядру нужно от протокольного клиента.

    connect() блокирует не дольше timeout; успешный вход подтверждается
    событием handle_logged_on у слушателя.
    """

    def set_listener(self, listener: SessionListener) -> None: ...

    def connect(self, refresh_token: str, timeout: float) -> None: ...

    def is_connected(self) -> bool: ...

    def enable_auto_relogin(self) -> None: ...

    def request_web_session(self) -> None: ...

    def declare_active_applications(self, app_ids: Sequence[int]) -> None: ...


class Authenticator(Protocol):
    """Получение refresh-токена по учётным данным"""

    def login(self, username: str, password: str) -> str: ...


def as_id_list(app_ids: Sequence[int], limit: int) -> List[int]:
    """Список appid для объявления, обрезанный по пределу отображения"""
    return [int(app_id) for app_id in list(app_ids)[:limit]]
