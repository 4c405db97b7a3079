"""
Реальный клиент Steam на базе библиотеки steam (ValvePython).
Реализует узкий интерфейс SessionClient и получение токена (login key).
Работает поверх gevent: запуск через `python -m card_idler` патчит стандартную
библиотеку заранее, поэтому таймеры и HTTP живут на одном хабе с клиентом.
"""
import threading

from loguru import logger
from steam.client import SteamClient
from steam.enums import EResult

from card_idler.errors import SessionError


class SteamSessionClient:
    """Адаптер SteamClient к интерфейсу SessionClient"""

    def __init__(self, username, client=None, login_key_wait=10):
        """
        Инициализация клиента

        Args:
            username (str): Имя аккаунта Steam
            client (SteamClient, optional): Готовый клиент библиотеки steam
            login_key_wait (float): Сколько ждать login key после входа
        """
        self.username = username
        self.client = client or SteamClient()
        self.login_key_wait = login_key_wait

        self._listener = None
        self._auto_relogin = False
        self._logging_on = False
        self._lock = threading.Lock()
        self._login_key_ready = threading.Event()

        self.client.on(SteamClient.EVENT_LOGGED_ON, self._on_logged_on)
        self.client.on(SteamClient.EVENT_DISCONNECTED, self._on_disconnected)
        self.client.on(SteamClient.EVENT_ERROR, self._on_error)
        self.client.on(SteamClient.EVENT_NEW_LOGIN_KEY, self._on_new_login_key)

        logger.info(f"SteamSessionClient инициализирован для {username}")

    # ===== АУТЕНТИФИКАЦИЯ =====

    def login(self, username, password) -> str:
        """
        Интерактивный вход (коды Steam Guard запрашивает сама библиотека)

        Returns:
            str: login key для последующих подключений

        Raises:
            SessionError: Если вход не удался или ключ не выдан
        """
        self.username = username
        result = self.client.cli_login(username=username, password=password)
        if result != EResult.OK:
            raise SessionError(f"Вход в Steam не удался: {result!r}")

        if not self.client.login_key and not self._login_key_ready.wait(self.login_key_wait):
            raise SessionError("Steam не выдал login key")
        return self.client.login_key

    # ===== SessionClient =====

    def set_listener(self, listener):
        self._listener = listener

    def connect(self, refresh_token, timeout):
        with self._lock:
            if self._logging_on:
                raise SessionError("Already attempting to log on")
            self._logging_on = True

        try:
            if self.client.logged_on:
                self._notify_logged_on()
                return

            if not self.client.connected and not self.client.connect(retry=1):
                raise SessionError("Нет соединения с серверами Steam")

            result = self.client.login(self.username, login_key=refresh_token)
            if result != EResult.OK:
                raise SessionError(f"Steam отклонил вход: {result!r}")

            if not self.client.logged_on:
                self.client.wait_event(SteamClient.EVENT_LOGGED_ON, timeout=timeout)
            if not self.client.logged_on:
                raise SessionError(f"Нет подтверждения входа за {timeout}s")
            self._notify_logged_on()
        finally:
            with self._lock:
                self._logging_on = False

    def is_connected(self):
        return bool(self.client.connected and self.client.logged_on)

    def enable_auto_relogin(self):
        self._auto_relogin = True

    def request_web_session(self):
        threading.Thread(target=self._fetch_web_session, name="web-session", daemon=True).start()

    def declare_active_applications(self, app_ids):
        self.client.games_played(list(app_ids))

    # ===== ВНУТРЕННЕЕ =====

    def _notify_logged_on(self):
        if self._listener is not None:
            self._listener.handle_logged_on(self.client.steam_id.as_64)

    def _fetch_web_session(self):
        cookies = self.client.get_web_session_cookies()
        if not cookies:
            logger.warning("Steam не выдал web-cookies")
            return
        if self._listener is not None:
            self._listener.handle_web_session(dict(cookies))

    def _on_logged_on(self):
        if self._listener is not None and not self._logging_on:
            self._notify_logged_on()

    def _on_disconnected(self):
        if self._listener is not None:
            self._listener.handle_disconnected(None)
        if self._auto_relogin and self.client.relogin_available:
            threading.Thread(target=self._auto_relogin_once, name="auto-relogin", daemon=True).start()

    def _auto_relogin_once(self):
        with self._lock:
            if self._logging_on:
                return
            self._logging_on = True
        relogged = False
        try:
            if self.client.reconnect(maxdelay=30, retry=3):
                relogged = self.client.relogin() == EResult.OK
        finally:
            with self._lock:
                self._logging_on = False
        if relogged:
            self._notify_logged_on()

    def _on_error(self, result):
        if self._listener is not None:
            self._listener.handle_error(SessionError(f"Steam: {result!r}"))

    def _on_new_login_key(self):
        self._login_key_ready.set()
