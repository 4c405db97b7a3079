"""
Надзор за подключением к Steam.
Отслеживает вход и обрывы, полагается на встроенный автоперевход сессии и
подстраховывает его ручным переподключением по таймерам. После восстановления
связи вызывает хуки on_connected (планировщик заново объявляет свой набор).
"""
import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from card_idler.errors import SessionError
from card_idler.utils.session import AccountSession
from card_idler.utils.timers import TimerFactory


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    """Конечный автомат подключения одного аккаунта"""

    def __init__(self, session_client, settings, account=None, timers=None, clock=time.monotonic):
        """
        Инициализация супервизора

        Args:
            session_client (SessionClient): Протокольный клиент сессии
            settings (IdlerSettings): Настройки (таймауты и интервалы)
            account (AccountSession, optional): Состояние аккаунта
            timers (TimerFactory, optional): Фабрика таймеров
            clock (callable): Источник монотонного времени
        """
        self.client = session_client
        self.settings = settings
        self.account = account or AccountSession()
        self.timers = timers or TimerFactory()
        self.clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.consecutive_failures = 0

        self._refresh_token: Optional[str] = None
        self._reconnecting = False
        self._stopped = False
        self._has_connected = False
        self._cooldown_until = 0.0
        self._guard = threading.Lock()

        self._poll_timer = None
        self._fallback_timer = None

        self._connected_hooks: List[Callable[[], None]] = []
        self._disconnected_hooks: List[Callable[[], None]] = []
        self._fatal_hooks: List[Callable[[Exception], None]] = []
        self._web_session_hooks: List[Callable[[], None]] = []

        self.client.set_listener(self)
        logger.info("ConnectionSupervisor инициализирован")

    # ===== ХУКИ =====

    def on_connected(self, callback):
        self._connected_hooks.append(callback)

    def on_disconnected(self, callback):
        self._disconnected_hooks.append(callback)

    def on_fatal_error(self, callback):
        self._fatal_hooks.append(callback)

    def on_web_session(self, callback):
        self._web_session_hooks.append(callback)

    def _fire(self, hooks, *args):
        for hook in list(hooks):
            try:
                hook(*args)
            except Exception as e:
                logger.error(f"Ошибка в обработчике события подключения: {e}")

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def reconnect_in_flight(self) -> bool:
        return self._reconnecting

    # ===== ПОДКЛЮЧЕНИЕ =====

    def connect(self, refresh_token: str) -> AccountSession:
        """
        Первичное подключение; ошибка фатальна для запуска

        Args:
            refresh_token (str): Токен, полученный при входе

        Returns:
            AccountSession: Сессия с заполненным steam_id

        Raises:
            SessionError: Если вход не удался или не подтверждён за connect_timeout
        """
        self._refresh_token = refresh_token
        self._stopped = False
        with self._guard:
            self.state = ConnectionState.CONNECTING

        try:
            self.client.enable_auto_relogin()
        except Exception as e:
            logger.debug(f"Автоперевход недоступен: {e}")

        try:
            self.client.connect(refresh_token, timeout=self.settings.connect_timeout)
        except Exception as e:
            error = e if isinstance(e, SessionError) else SessionError(f"Ошибка подключения к Steam: {e}")
            with self._guard:
                self.state = ConnectionState.DISCONNECTED
            logger.error(f"✗ {error}")
            self._fire(self._fatal_hooks, error)
            raise error

        if not self.connected:
            error = SessionError(f"Вход не подтверждён за {self.settings.connect_timeout}s")
            with self._guard:
                self.state = ConnectionState.DISCONNECTED
            logger.error(f"✗ {error}")
            self._fire(self._fatal_hooks, error)
            raise error

        return self.account

    def start_monitoring(self):
        """Запуск лёгкого опроса 'всё ещё подключены?'"""
        if self._poll_timer is not None:
            self._poll_timer.cancel()
        self._poll_timer = self.timers.periodic(
            self.settings.connectivity_poll_interval, self._poll_connectivity, name="connectivity-poll")

    def stop(self):
        """Снятие таймеров и сброс флага переподключения"""
        self._stopped = True
        for timer in (self._poll_timer, self._fallback_timer):
            if timer is not None:
                timer.cancel()
        self._poll_timer = None
        self._fallback_timer = None
        with self._guard:
            self._reconnecting = False
        logger.info("Надзор за подключением остановлен")

    # ===== СОБЫТИЯ СЕССИИ =====

    def handle_logged_on(self, steam_id: int):
        with self._guard:
            was = self.state
            self.account.steam_id = int(steam_id) if steam_id else self.account.steam_id
            self.account.logged_on = True
            self.state = ConnectionState.CONNECTED
            self.consecutive_failures = 0
            reconnected = self._has_connected
            self._has_connected = True

        if was == ConnectionState.CONNECTED:
            return

        if reconnected:
            logger.info(f"✓ Переподключение к Steam выполнено ({self.account.steam_id})")
        else:
            logger.info(f"✓ Вход выполнен как {self.account.steam_id}")

        # cookies прошлой сессии после переподключения недействительны
        if reconnected or not self.account.has_web_session:
            try:
                self.client.request_web_session()
            except Exception as e:
                logger.debug(f"Не удалось запросить web-cookies: {e}")

        self._fire(self._connected_hooks)

    def handle_disconnected(self, code: Optional[int] = None):
        if self._stopped:
            return
        with self._guard:
            was = self.state
            self.state = ConnectionState.DISCONNECTED
            self.account.logged_on = False

        logger.warning(f"Отключены от Steam (ждём автоперевход). Код: {code if code is not None else '-'}")
        if was == ConnectionState.CONNECTED:
            self._fire(self._disconnected_hooks)
        self._arm_fallback()

    def handle_error(self, error: Exception):
        logger.error(f"Ошибка клиента Steam: {error}")
        if self.connected and not self._client_connected():
            with self._guard:
                self.state = ConnectionState.DISCONNECTED
                self.account.logged_on = False

    def handle_web_session(self, cookies: Dict[str, str]):
        self.account.set_web_cookies(cookies)
        logger.info("Получены web-cookies для разбора страницы значков")
        self._fire(self._web_session_hooks)

    # ===== ПЕРЕПОДКЛЮЧЕНИЕ =====

    def _client_connected(self) -> bool:
        try:
            return bool(self.client.is_connected())
        except Exception:
            return False

    def _arm_fallback(self):
        if self._fallback_timer is not None:
            self._fallback_timer.cancel()
        self._fallback_timer = self.timers.once(
            self.settings.fallback_reconnect_delay, self._fallback_reconnect, name="fallback-reconnect")

    def _fallback_reconnect(self):
        self._fallback_timer = None
        if self._stopped or self.connected or self._reconnecting:
            return
        logger.info("Всё ещё нет подключения - пробуем ручное переподключение...")
        self.manual_reconnect()

    def _poll_connectivity(self):
        if self._stopped:
            return
        if self._client_connected():
            return
        if self.connected:
            # встроенный механизм молча потерял соединение
            with self._guard:
                self.state = ConnectionState.DISCONNECTED
                self.account.logged_on = False
            logger.warning("Опрос: соединение потеряно без события disconnected")
        if not self._reconnecting:
            self.manual_reconnect()

    def manual_reconnect(self) -> bool:
        """
        Одна попытка ручного переподключения; параллельные попытки не запускаются

        Returns:
            bool: True если после попытки сессия подключена
        """
        if self._stopped or not self._refresh_token:
            return False

        with self._guard:
            if self._reconnecting:
                return False
            if self.clock() < self._cooldown_until:
                logger.debug("Переподключение на паузе после серии неудач")
                return False
            self._reconnecting = True
            if self.state != ConnectionState.CONNECTED:
                self.state = ConnectionState.CONNECTING

        try:
            self.client.connect(self._refresh_token, timeout=self.settings.connect_timeout)
        except Exception as e:
            message = str(e)
            if 'already' in message.lower():
                logger.debug("Вход уже выполняется встроенным механизмом")
            else:
                self._register_failure(message)
            return False
        finally:
            with self._guard:
                self._reconnecting = False
                if self.state == ConnectionState.CONNECTING:
                    self.state = ConnectionState.DISCONNECTED

        if not self.connected:
            self._register_failure("вход не подтверждён")
            return False
        return True

    def _register_failure(self, reason):
        self.consecutive_failures += 1
        logger.warning(f"Ручное переподключение не удалось ({self.consecutive_failures}/"
                       f"{self.settings.max_reconnect_attempts}): {reason}")
        if self.consecutive_failures >= self.settings.max_reconnect_attempts:
            self._cooldown_until = self.clock() + self.settings.reconnect_cooldown
            self.consecutive_failures = 0
            logger.error(f"Слишком много неудачных попыток - пауза {self.settings.reconnect_cooldown}s")
