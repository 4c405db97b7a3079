"""
Проход обнаружения: опрос источников наград и ранжирование кандидатов.
"""
from dataclasses import dataclass, field
from typing import List, Set

from loguru import logger

from card_idler.discovery.ranker import MergePolicy, manual_candidates, merge_records
from card_idler.records import RewardRecord


@dataclass
class DiscoveryResult:
    """Итог одного прохода обнаружения"""
    candidates: List[int] = field(default_factory=list)
    records: List[RewardRecord] = field(default_factory=list)  # после слияния источников
    primary: List[RewardRecord] = field(default_factory=list)
    document: List[RewardRecord] = field(default_factory=list)
    document_deferred: bool = False
    manual: bool = False

    @property
    def positive_ids(self) -> Set[int]:
        return {record.app_id for record in self.records if record.has_remaining}

    @property
    def has_data(self) -> bool:
        """Сообщил ли хоть один источник известный остаток дропов"""
        return any(record.remaining is not None for record in self.records)

    def hours_by_app(self):
        return {record.app_id: record.hours for record in self.document if record.hours is not None}


class CandidateDiscovery:
    """Связка источников наград, кэша и ранжирования"""

    def __init__(self, settings, web_api=None, community=None, ranker=None):
        """
        Args:
            settings (IdlerSettings): Настройки
            web_api (SteamWebApi, optional): Числовой источник; None - ключа API нет
            community (CommunityBadges, optional): Документный источник
            ranker (CandidateRanker, optional): Ранжирование с broad mode
        """
        self.settings = settings
        self.web_api = web_api
        self.community = community
        self.ranker = ranker

    @property
    def reward_source_configured(self) -> bool:
        return self.web_api is not None

    def _safe_fetch(self, label, fetch, account):
        try:
            return list(fetch(account) or [])
        except Exception as e:
            logger.warning(f"Источник '{label}' недоступен: {e}")
            return []

    def snapshot(self, account, include_document=False) -> DiscoveryResult:
        """
        Опрос источников без ранжирования

        Args:
            account (AccountSession): Сессия аккаунта
            include_document (bool): Читать страницу значков даже если политика слияния её не требует

        Returns:
            DiscoveryResult: Слитые записи и записи страницы значков
        """
        result = DiscoveryResult()
        if not self.reward_source_configured:
            return result

        primary = self._safe_fetch('GetBadges', self.web_api.fetch_reward_counts, account)
        result.primary = primary

        policy = MergePolicy(self.settings.merge_policy)
        document = []
        if self.community is not None and (include_document or policy.needs_document(primary)):
            if account.has_web_session:
                document = self._safe_fetch('badges page', self.community.fetch_document_reward_counts, account)
                if not document:
                    logger.info("Страница значков не дала данных")
            else:
                logger.info("Web-cookies ещё нет - разбор страницы значков отложен")
                result.document_deferred = True

        result.document = document
        result.records = merge_records(primary, document, policy)
        return result

    def discover(self, account, exclude=(), needed=None, snapshot=None) -> DiscoveryResult:
        """
        Полный проход: источники -> слияние -> ранжирование

        Args:
            account (AccountSession): Сессия аккаунта
            exclude (iterable): Уже активные appid
            needed (int, optional): Сколько новых игр нужно
            snapshot (DiscoveryResult, optional): Уже полученные данные источников

        Returns:
            DiscoveryResult: Кандидаты в порядке приоритета
        """
        if not self.reward_source_configured:
            result = DiscoveryResult(candidates=manual_candidates(self.settings.manual_app_ids), manual=True)
            logger.info(f"Источник наград не настроен - ручной список: {len(result.candidates)} игр")
            return result

        result = snapshot if snapshot is not None else self.snapshot(account)

        def load_owned():
            return self._safe_fetch('GetOwnedGames', self.web_api.fetch_owned_catalog, account)

        try:
            ranked = self.ranker.rank(
                primary=result.primary,
                document=result.document,
                load_owned=load_owned,
                target=self.settings.active_limit,
                policy=MergePolicy(self.settings.merge_policy),
                exclude=exclude,
                needed=needed,
            )
        except Exception as e:
            logger.error(f"Ошибка ранжирования кандидатов: {e}")
            return result

        result.candidates = ranked.candidates
        logger.info(f"Кандидатов найдено: {len(result.candidates)}")
        return result
