"""
Кэш поддержки карточек: appid -> есть ли у игры категория карточек в магазине.
Записи не устаревают, файл перезаписывается целиком после каждой пачки проверок,
чтобы падение процесса не теряло уже выполненные проверки.
"""
import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeout
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from loguru import logger

Probe = Callable[[int], Optional[bool]]


class CapabilityCache:
    """Постоянный кэш классификации игр с ограниченным параллелизмом проверок"""

    def __init__(self, cache_path="store-category-cache.json", concurrency=6, batch_timeout=60):
        """
        Инициализация кэша

        Args:
            cache_path (str): Путь к JSON файлу кэша
            concurrency (int): Сколько проверок выполнять одновременно
            batch_timeout (float): Предельное время ожидания одной пачки проверок
        """
        self.cache_path = Path(cache_path)
        self.concurrency = max(1, concurrency)
        self.batch_timeout = batch_timeout

        self._entries: Dict[int, bool] = {}
        self._loaded = False
        self._dirty = False
        self._lock = threading.RLock()

    def __len__(self):
        self._ensure_loaded()
        return len(self._entries)

    def __contains__(self, app_id):
        return self.has(app_id) is not None

    def load(self) -> int:
        """
        Загрузка кэша с диска (один раз за запуск)

        Returns:
            int: Количество записей после загрузки
        """
        with self._lock:
            if self._loaded:
                return len(self._entries)
            self._loaded = True

            if not self.cache_path.exists():
                logger.debug(f"Файл кэша не найден: {self.cache_path} - начинаем с пустого")
                return 0

            try:
                with open(self.cache_path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Не удалось прочитать кэш {self.cache_path}: {e}")
                return 0

            if not isinstance(raw, dict):
                logger.warning(f"Кэш {self.cache_path} имеет неверный формат - игнорируем")
                return 0

            for key, value in raw.items():
                try:
                    app_id = int(key)
                except (TypeError, ValueError):
                    continue
                # значения с диска не перетирают записи, сделанные до загрузки
                self._entries.setdefault(app_id, bool(value))

            logger.info(f"Загружено записей кэша категорий: {len(self._entries)}")
            return len(self._entries)

    def _ensure_loaded(self):
        if not self._loaded:
            self.load()

    def has(self, app_id) -> Optional[bool]:
        """True/False если игра уже классифицирована, иначе None"""
        self._ensure_loaded()
        with self._lock:
            return self._entries.get(int(app_id))

    def set(self, app_id, capable) -> bool:
        """
        Запись классификации

        Args:
            app_id (int): appid игры
            capable (bool): Есть ли категория карточек; None игнорируется

        Returns:
            bool: True если запись изменилась
        """
        if capable is None:
            return False
        self._ensure_loaded()
        with self._lock:
            app_id = int(app_id)
            capable = bool(capable)
            if self._entries.get(app_id) == capable:
                return False
            self._entries[app_id] = capable
            self._dirty = True
            return True

    def persist(self) -> bool:
        """
        Атомарная перезапись файла кэша

        Returns:
            bool: True если файл записан
        """
        with self._lock:
            if not self._dirty:
                return False
            snapshot = {str(app_id): value for app_id, value in sorted(self._entries.items())}
            tmp_path = self.cache_path.with_name(self.cache_path.name + '.tmp')
            try:
                self.cache_path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(snapshot, f)
                os.replace(tmp_path, self.cache_path)
            except OSError as e:
                logger.warning(f"Не удалось сохранить кэш {self.cache_path}: {e}")
                return False
            self._dirty = False
            logger.debug(f"Кэш категорий сохранён: {len(snapshot)} записей")
            return True

    def classify(self, app_ids: Iterable[int], probe: Probe) -> Dict[int, bool]:
        """
        Классификация пачки игр: из кэша или через probe

        Проверки выполняются не более чем по concurrency одновременно,
        после пачки новые записи сразу сохраняются на диск.

        Args:
            app_ids (iterable): appid для классификации
            probe (callable): Проверка одной игры, возвращает True/False/None

        Returns:
            dict: {appid: bool} для всех игр, классификация которых известна
        """
        results = {}
        pending = []
        for app_id in app_ids:
            known = self.has(app_id)
            if known is None:
                pending.append(int(app_id))
            else:
                results[int(app_id)] = known

        if not pending:
            return results

        executor = ThreadPoolExecutor(max_workers=min(self.concurrency, len(pending)))
        futures = {executor.submit(probe, app_id): app_id for app_id in pending}
        timed_out = False
        try:
            for future in as_completed(futures, timeout=self.batch_timeout):
                app_id = futures[future]
                try:
                    capable = future.result()
                except Exception as e:
                    logger.debug(f"Проверка {app_id} завершилась ошибкой: {e}")
                    continue
                if capable is None:
                    continue
                self.set(app_id, capable)
                results[app_id] = bool(capable)
        except FuturesTimeout:
            timed_out = True
            logger.warning(f"Таймаут пачки проверок ({self.batch_timeout}s) - незавершённые пропущены")
        finally:
            # зависшие проверки не ждём
            executor.shutdown(wait=not timed_out, cancel_futures=timed_out)

        self.persist()
        return results

    def summary(self) -> Dict[str, int]:
        """Сводка по кэшу для CLI"""
        self._ensure_loaded()
        with self._lock:
            capable = sum(1 for value in self._entries.values() if value)
            return {
                'total': len(self._entries),
                'capable': capable,
                'not_capable': len(self._entries) - capable,
            }

    def capable_ids(self):
        self._ensure_loaded()
        with self._lock:
            return sorted(app_id for app_id, value in self._entries.items() if value)
