"""
Ранжирование кандидатов на idle.
Сливает числовой и документный источники, сортирует игры с остатком дропов и
при нехватке добирает игры из библиотеки через кэш поддержки карточек (broad mode).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from card_idler.records import OwnedApp, RewardRecord


class MergePolicy(str, Enum):
    """Чей остаток дропов главнее, если его сообщают оба источника"""
    DOCUMENT_PREFERRED = "document_preferred"
    DOCUMENT_WHEN_PRIMARY_EMPTY = "document_when_primary_empty"
    PRIMARY_PREFERRED = "primary_preferred"

    def needs_document(self, primary: Sequence[RewardRecord]) -> bool:
        """Нужно ли вообще обращаться к документному источнику"""
        if self is MergePolicy.DOCUMENT_WHEN_PRIMARY_EMPTY:
            return not any(record.has_remaining for record in primary)
        return True


def merge_records(primary: Sequence[RewardRecord], document: Sequence[RewardRecord],
                  policy: MergePolicy = MergePolicy.DOCUMENT_PREFERRED) -> List[RewardRecord]:
    """
    Слияние записей двух источников по appid

    Args:
        primary (list): Записи числового источника
        document (list): Записи документного источника (с часами)
        policy (MergePolicy): Политика приоритета остатка

    Returns:
        list: Объединённые записи: сначала порядок primary, затем новые из document
    """
    policy = MergePolicy(policy)
    use_document = policy.needs_document(primary)

    by_document: Dict[int, RewardRecord] = {}
    for record in document:
        by_document.setdefault(record.app_id, record)

    merged: Dict[int, RewardRecord] = {}
    for record in primary:
        if record.app_id in merged:
            continue
        doc = by_document.get(record.app_id)
        remaining = record.remaining
        if doc is not None and use_document:
            if policy is MergePolicy.PRIMARY_PREFERRED:
                if remaining is None:
                    remaining = doc.remaining
            elif doc.remaining is not None:
                remaining = doc.remaining
        merged[record.app_id] = RewardRecord(
            app_id=record.app_id,
            remaining=remaining,
            hours=doc.hours if doc is not None else record.hours,
        )

    if use_document:
        for app_id, doc in by_document.items():
            if app_id not in merged:
                merged[app_id] = doc

    return list(merged.values())


def _hit_sort_key(record: RewardRecord):
    hours = record.hours if record.hours is not None else -1.0
    return (-hours, -(record.remaining or 0), record.app_id)


def direct_hits(merged: Iterable[RewardRecord]) -> List[RewardRecord]:
    """Игры с положительным остатком: часы desc, остаток desc, appid asc"""
    return sorted((r for r in merged if r.has_remaining), key=_hit_sort_key)


def order_catalog(owned: Iterable[OwnedApp], low_playtime_minutes: int = 30) -> List[int]:
    """Порядок просмотра библиотеки: не запускались, мало наиграно, остальные"""
    never, low, rest = [], [], []
    for app in owned:
        if app.playtime_minutes <= 0:
            never.append(app.app_id)
        elif app.playtime_minutes < low_playtime_minutes:
            low.append(app.app_id)
        else:
            rest.append(app.app_id)
    return _dedupe(never + low + rest)


def _dedupe(app_ids: Iterable[int]) -> List[int]:
    seen = set()
    result = []
    for app_id in app_ids:
        if app_id not in seen:
            seen.add(app_id)
            result.append(app_id)
    return result


def manual_candidates(app_ids: Iterable[int]) -> List[int]:
    """Ручной список appid без дублей"""
    return _dedupe(int(app_id) for app_id in app_ids)


@dataclass
class RankResult:
    """Результат одного ранжирования"""
    candidates: List[int] = field(default_factory=list)
    direct: List[RewardRecord] = field(default_factory=list)
    broad: List[int] = field(default_factory=list)
    probes_used: int = 0


class CandidateRanker:
    """Упорядочивание кандидатов с добором через кэш поддержки карточек"""

    def __init__(self, cache, probe, probe_budget=2400, low_playtime_minutes=30):
        """
        Args:
            cache (CapabilityCache): Кэш поддержки карточек
            probe (callable): Проверка одной игры в магазине
            probe_budget (int): Максимум сетевых проверок за одно ранжирование
            low_playtime_minutes (int): Порог "мало наиграно" в минутах
        """
        self.cache = cache
        self.probe = probe
        self.probe_budget = probe_budget
        self.low_playtime_minutes = low_playtime_minutes
        self.broad_mode = False

    def rank(self, primary: Sequence[RewardRecord], document: Sequence[RewardRecord],
             load_owned: Optional[Callable[[], Sequence[OwnedApp]]], target: int,
             policy: MergePolicy = MergePolicy.DOCUMENT_PREFERRED,
             exclude: Iterable[int] = (), needed: Optional[int] = None) -> RankResult:
        """
        Упорядоченный список кандидатов

        Args:
            primary (list): Записи числового источника
            document (list): Записи документного источника
            load_owned (callable): Загрузка библиотеки, вызывается только в broad mode
            target (int): Целевое число одновременно активных игр
            policy (MergePolicy): Политика слияния источников
            exclude (iterable): appid, которые уже выбраны и не считаются в квоту
            needed (int, optional): Сколько новых игр нужно (по умолчанию target)

        Returns:
            RankResult: Прямые попадания, затем находки broad mode, без дублей
        """
        merged = merge_records(primary, document, policy)
        hits = direct_hits(merged)
        direct_ids = [record.app_id for record in hits]

        if hits:
            preview = ' | '.join(
                f"{r.app_id}:{r.hours if r.hours is not None else '?'}h rem={r.remaining}" for r in hits[:5]
            )
            logger.info(f"Игр с остатком дропов: {len(hits)}. Топ (по часам): {preview}")
        else:
            logger.info("Игр с остатком дропов: 0")

        excluded = {int(app_id) for app_id in exclude}
        fresh = [app_id for app_id in direct_ids if app_id not in excluded]
        quota = (target if needed is None else needed) - len(fresh)

        result = RankResult(direct=hits)
        if quota > 0 and load_owned is not None:
            if not self.broad_mode:
                self.broad_mode = True
                logger.info("Прямых кандидатов не хватает: broad mode ВКЛЮЧЁН")
            logger.info(f"Broad mode: ищем ещё {quota} игр с карточками в библиотеке...")
            result.broad, result.probes_used = self.broad_scan(
                load_owned() or [], quota, excluded | set(direct_ids))
            logger.info(f"Broad mode добавил {len(result.broad)} (проверок: {result.probes_used})")

        result.candidates = _dedupe(direct_ids + result.broad)
        return result

    def broad_scan(self, owned: Sequence[OwnedApp], quota: int, exclude=()):
        """
        Поиск игр с карточками в библиотеке

        Args:
            owned (list): Библиотека аккаунта
            quota (int): Сколько игр нужно найти
            exclude (set): appid, которые пропускаются

        Returns:
            tuple: (найденные appid в порядке просмотра, число сетевых проверок)
        """
        found: List[int] = []
        probes_used = 0
        window: List[int] = []

        def flush():
            nonlocal probes_used
            classified = self.cache.classify(window, self.probe)
            probes_used += len(window)
            found.extend(app_id for app_id in window if classified.get(app_id))
            window.clear()

        for app_id in order_catalog(owned, self.low_playtime_minutes):
            if len(found) >= quota:
                break
            if app_id in exclude:
                continue

            known = self.cache.has(app_id)
            if known is not None:
                if known:
                    # более ранние игры из окна идут раньше по порядку каталога
                    if window:
                        flush()
                        if len(found) >= quota:
                            break
                    found.append(app_id)
                continue

            if probes_used + len(window) >= self.probe_budget:
                logger.info(f"Бюджет проверок исчерпан ({self.probe_budget})")
                break
            window.append(app_id)
            if len(window) >= self.cache.concurrency:
                flush()

        if window and len(found) < quota:
            flush()

        return found[:quota], probes_used
