"""
Планировщик набора активных игр.
Владеет активным набором: выбирает игры при старте, периодически убирает
игры без оставшихся дропов, добирает новые и объявляет набор сессии Steam.
"""
import threading
from enum import Enum
from typing import Dict, List, Set

from loguru import logger

from card_idler.discovery.service import DiscoveryResult
from card_idler.utils.session import as_id_list
from card_idler.utils.timers import TimerFactory


class SchedulerState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    ACTIVE = "active"
    REFRESHING = "refreshing"
    STOPPED = "stopped"


class IdlingScheduler:
    """Конечный автомат набора активных игр одного аккаунта"""

    def __init__(self, session_client, account, discovery, settings, timers=None):
        """
        Инициализация планировщика

        Args:
            session_client (SessionClient): Куда объявлять активные игры
            account (AccountSession): Сессия аккаунта (steam_id, cookies)
            discovery (CandidateDiscovery): Проход обнаружения кандидатов
            settings (IdlerSettings): Настройки
            timers (TimerFactory, optional): Фабрика таймеров
        """
        self.client = session_client
        self.account = account
        self.discovery = discovery
        self.settings = settings
        self.timers = timers or TimerFactory()

        self.state = SchedulerState.IDLE
        self.ever_rewarded: Set[int] = set()
        self.last_declared: List[int] = []

        self._active: Dict[int, None] = {}  # порядок вставки = порядок объявления
        self._lock = threading.RLock()
        self._refresh_guard = threading.Lock()
        self._refresh_timer = None
        self._restart_timer = None
        self._document_deferred = False

        logger.info(f"IdlingScheduler инициализирован: цель {settings.target_parallel}, "
                    f"потолок {settings.active_limit}")

    @property
    def active_ids(self) -> List[int]:
        with self._lock:
            return list(self._active)

    @property
    def running(self) -> bool:
        return self.state in (SchedulerState.ACTIVE, SchedulerState.REFRESHING)

    # ===== ЖИЗНЕННЫЙ ЦИКЛ =====

    def start(self) -> bool:
        """
        Первичное обнаружение и запуск idle

        Returns:
            bool: True если набор объявлен и таймер перепроверок запущен
        """
        with self._lock:
            if self.state != SchedulerState.IDLE:
                logger.warning(f"Старт проигнорирован: планировщик в состоянии {self.state.value}")
                return False
            self.state = SchedulerState.DISCOVERING

        if self.discovery.reward_source_configured and not self.account.has_web_session:
            # cookies нужны для страницы значков, но ждём их ограниченно
            if not self.account.wait_for_web_session(self.settings.web_session_wait):
                logger.info(f"Web-cookies не получены за {self.settings.web_session_wait}s - продолжаем без них")

        try:
            result = self.discovery.discover(self.account)
        except Exception as e:
            logger.error(f"Ошибка обнаружения кандидатов: {e}")
            result = DiscoveryResult()

        with self._lock:
            if self.state != SchedulerState.DISCOVERING:
                logger.info("Планировщик остановлен во время обнаружения")
                return False

            self._observe(result.positive_ids)
            self._document_deferred = result.document_deferred

            if not result.candidates:
                logger.warning("Кандидаты не найдены. Остановка idler-а.")
                self.state = SchedulerState.STOPPED
                return False

            initial = self._choose_next(result.candidates, self.settings.active_limit)
            for app_id in initial:
                self._active[app_id] = None

            self._apply()
            self.state = SchedulerState.ACTIVE
            self._refresh_timer = self.timers.periodic(
                self.settings.refresh_interval, self._on_refresh_timer, name="badge-refresh")

        logger.info(f"✓ Idle запущен: {len(initial)} игр, перепроверка каждые {self.settings.refresh_interval}s")
        if self._document_deferred and self.account.has_web_session:
            # cookies пришли, пока шло обнаружение
            self.on_web_session_ready()
        return True

    def stop(self):
        """Остановка таймеров, очистка набора и пустое объявление"""
        with self._lock:
            if self._refresh_timer is not None:
                self._refresh_timer.cancel()
                self._refresh_timer = None
            if self._restart_timer is not None:
                self._restart_timer.cancel()
                self._restart_timer = None

            was = self.state
            self._active.clear()
            self.state = SchedulerState.STOPPED

            if was != SchedulerState.STOPPED:
                self._declare([])
                logger.info("Idle остановлен")

    def reapply(self) -> bool:
        """
        Повторное объявление текущего набора после переподключения

        Returns:
            bool: True если набор был объявлен
        """
        with self._lock:
            if not self.running or not self._active:
                return False
            logger.info("Восстанавливаем список idle после переподключения...")
            self._apply()
            return True

    def on_web_session_ready(self):
        """Cookies появились: если разбор страницы значков откладывался, добираем набор сразу"""
        with self._lock:
            if not self._document_deferred or not self.running:
                return
            self._document_deferred = False
            if len(self._active) >= self.settings.active_limit:
                return
        logger.info("Web-cookies получены - выполняем отложенное обнаружение")
        self.refresh()

    # ===== ПЕРИОДИЧЕСКАЯ ПЕРЕПРОВЕРКА =====

    def _on_refresh_timer(self):
        logger.info("--- Периодическая перепроверка значков ---")
        self.refresh()

    def refresh(self) -> bool:
        """
        Один цикл перепроверки; ошибки внутри цикла логируются и не пробрасываются

        Returns:
            bool: True если набор изменился
        """
        if not self._refresh_guard.acquire(blocking=False):
            logger.warning("Перепроверка уже выполняется - пропускаем")
            return False

        try:
            with self._lock:
                if self.state != SchedulerState.ACTIVE:
                    return False
                self.state = SchedulerState.REFRESHING

            try:
                return self._refresh_cycle()
            except Exception as e:
                logger.error(f"Ошибка перепроверки значков: {e}")
                return False
            finally:
                with self._lock:
                    if self.state == SchedulerState.REFRESHING:
                        self.state = SchedulerState.ACTIVE
        finally:
            self._refresh_guard.release()

    def _refresh_cycle(self) -> bool:
        if not self.discovery.reward_source_configured:
            return False

        snapshot = self.discovery.snapshot(self.account, include_document=True)

        with self._lock:
            if self.state != SchedulerState.REFRESHING:
                return False
            before = list(self._active)

            if snapshot.has_data:
                positive = snapshot.positive_ids
                self._observe(positive)
                completed = [app_id for app_id in self._active
                             if app_id in self.ever_rewarded and app_id not in positive]
                for app_id in completed:
                    del self._active[app_id]
                if completed:
                    logger.info(f"Убраны игры без оставшихся дропов: {len(completed)} ({', '.join(map(str, completed))})")
            else:
                logger.warning("Ни один источник не сообщил остаток дропов - удаление пропущено")

            self._document_deferred = snapshot.document_deferred
            needed = self.settings.active_limit - len(self._active)
            exclude = list(self._active)

        if needed > 0:
            logger.info(f"Добираем список idle: нужно ещё {needed}...")
            result = self.discovery.discover(self.account, exclude=exclude, needed=needed, snapshot=snapshot)
            with self._lock:
                if self.state != SchedulerState.REFRESHING:
                    return False
                chosen = self._choose_next(result.candidates, self.settings.active_limit - len(self._active))
                for app_id in chosen:
                    self._active[app_id] = None
                if chosen:
                    logger.info(f"Добавлено игр: {len(chosen)}")

        with self._lock:
            if self.state != SchedulerState.REFRESHING:
                return False
            changed = list(self._active) != before
            if changed:
                self._apply()

        self._restart_long_sessions(snapshot.hours_by_app())
        return changed

    # ===== ПЕРЕЗАПУСК ДОЛГИХ СЕССИЙ =====

    def _restart_long_sessions(self, hours_by_app: Dict[int, float]) -> List[int]:
        """
        Временно убирает из объявления игры с часами выше порога и
        возвращает их через restart_delay секунд

        Returns:
            list: appid перезапускаемых игр
        """
        threshold = self.settings.restart_hours_threshold
        with self._lock:
            if not self.running:
                return []
            declared = as_id_list(self._active, self.settings.display_limit)
            restart = [app_id for app_id in declared if (hours_by_app.get(app_id) or 0) > threshold]
            if not restart:
                logger.debug(f"Нет игр для перезапуска (часы > {threshold})")
                return []

            logger.info(f"Перезапуск (часы > {threshold}) {len(restart)} игр: {', '.join(map(str, restart))}")
            self._declare([app_id for app_id in declared if app_id not in restart])
            if self._restart_timer is not None:
                self._restart_timer.cancel()
            self._restart_timer = self.timers.once(self.settings.restart_delay,
                                                   lambda: self._complete_restart(restart), name="restart")
            return restart

    def _complete_restart(self, restarted):
        with self._lock:
            self._restart_timer = None
            if not self.running:
                return
            self._apply()
            logger.info(f"Перезапуск завершён для: {', '.join(map(str, restarted))}")

    # ===== ВНУТРЕННЕЕ =====

    def _observe(self, positive_ids):
        self.ever_rewarded.update(positive_ids)

    def _choose_next(self, candidates, limit) -> List[int]:
        """Первые limit кандидатов, которых ещё нет в наборе"""
        chosen = []
        if limit <= 0:
            return chosen
        for app_id in candidates:
            if app_id not in self._active and app_id not in chosen:
                chosen.append(app_id)
                if len(chosen) >= limit:
                    break
        return chosen

    def _apply(self):
        ids = as_id_list(self._active, self.settings.display_limit)
        self._declare(ids)
        logger.info(f"Сейчас в idle: {', '.join(map(str, ids)) or '-'}")

    def _declare(self, ids: List[int]):
        self.last_declared = list(ids)
        try:
            self.client.declare_active_applications(list(ids))
        except Exception as e:
            logger.error(f"Не удалось объявить активные игры: {e}")
