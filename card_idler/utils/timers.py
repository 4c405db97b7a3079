"""
Таймеры для периодических перепроверок и отложенных действий.
Ошибка внутри колбэка логируется и не останавливает периодический таймер.
"""
import threading

from loguru import logger


class PeriodicTimer:
    """Повторяющийся вызов callback каждые interval секунд"""

    def __init__(self, interval, callback, name="periodic"):
        """
        Инициализация таймера

        Args:
            interval (float): Период в секундах
            callback (callable): Функция без аргументов
            name (str): Имя потока для логов
        """
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self):
        self._thread.start()
        logger.debug(f"Таймер '{self.name}' запущен (период {self.interval}s)")
        return self

    def cancel(self):
        self._stop_event.set()

    @property
    def active(self):
        return self._thread.is_alive() and not self._stop_event.is_set()

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Ошибка в таймере '{self.name}': {e}")
        logger.debug(f"Таймер '{self.name}' остановлен")


class TimerFactory:
    """Создание таймеров; в тестах подменяется ручной реализацией"""

    def periodic(self, interval, callback, name="periodic"):
        return PeriodicTimer(interval, callback, name=name).start()

    def once(self, delay, callback, name="once"):
        timer = threading.Timer(delay, callback)
        timer.name = name
        timer.daemon = True
        timer.start()
        return timer
