"""
Источники данных о наградах: Steam Web API, страница значков сообщества и
магазин (проверка поддержки карточек).
Любая транспортная ошибка или битый ответ превращается в пустой результат -
планировщик должен переживать полную потерю любого источника.
"""
from typing import Dict, List, Optional

import requests
from loguru import logger

from card_idler.records import OwnedApp, RewardRecord
from card_idler.utils.badge_parser import BadgeBlock, BadgePageParser, ParseOutcome

API_BASE = "https://api.steampowered.com/IPlayerService"
COMMUNITY_BADGES_URL = "https://steamcommunity.com/my/badges"
STORE_APPDETAILS_URL = "https://store.steampowered.com/api/appdetails"

TRADING_CARDS_CATEGORY = 29
REMAINING_ALIASES = ('cards_remaining', 'card_drop_remaining', 'card_drop_count')


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def remaining_from_badge(badge: Dict) -> Optional[int]:
    """Первое числовое поле из известных вариантов имени остатка дропов"""
    for alias in REMAINING_ALIASES:
        value = _as_int(badge.get(alias))
        if value is not None:
            return value
    return None


class SteamWebApi:
    """Числовой источник: GetBadges и GetOwnedGames по ключу API"""

    def __init__(self, http, api_key, timeout=15):
        """
        Args:
            http (requests.Session): HTTP сессия
            api_key (str): Ключ Steam Web API
            timeout (float): Таймаут одного запроса в секундах
        """
        self.http = http
        self.api_key = api_key
        self.timeout = timeout

    def _get_json(self, method, params, label):
        url = f"{API_BASE}/{method}/v1/"
        try:
            response = self.http.get(url, params={'key': self.api_key, **params}, timeout=self.timeout)
            if not response.ok:
                logger.warning(f"{label}: HTTP {response.status_code}")
                return None
            return response.json()
        except requests.RequestException as e:
            logger.warning(f"{label}: ошибка запроса: {e}")
            return None
        except ValueError as e:
            logger.warning(f"{label}: некорректный JSON: {e}")
            return None

    def fetch_reward_counts(self, account) -> List[RewardRecord]:
        """
        Значки аккаунта с остатком дропов (если API его сообщает)

        Args:
            account (AccountSession): Текущая сессия аккаунта

        Returns:
            list: RewardRecord для каждого значка игры, пустой список при ошибке
        """
        if not account.steam_id:
            return []

        payload = self._get_json('GetBadges', {'steamid': account.steam_id}, 'GetBadges')
        badges = ((payload or {}).get('response') or {}).get('badges') if isinstance(payload, dict) else None
        if not isinstance(badges, list):
            return []

        records = []
        for badge in badges:
            if not isinstance(badge, dict):
                continue
            app_id = _as_int(badge.get('appid'))
            if app_id is None:
                continue
            records.append(RewardRecord(app_id=app_id, remaining=remaining_from_badge(badge)))

        logger.debug(f"GetBadges: получено значков игр: {len(records)}")
        return records

    def fetch_owned_catalog(self, account) -> List[OwnedApp]:
        """
        Библиотека аккаунта с наигранным временем

        Returns:
            list: OwnedApp в порядке ответа API, пустой список при ошибке
        """
        if not account.steam_id:
            return []

        payload = self._get_json('GetOwnedGames', {
            'steamid': account.steam_id,
            'include_played_free_games': 1,
            'include_appinfo': 1,
        }, 'GetOwnedGames')
        games = ((payload or {}).get('response') or {}).get('games') if isinstance(payload, dict) else None
        if not isinstance(games, list):
            return []

        owned = []
        for game in games:
            if not isinstance(game, dict):
                continue
            app_id = _as_int(game.get('appid'))
            if app_id is None:
                continue
            owned.append(OwnedApp(app_id=app_id, playtime_minutes=_as_int(game.get('playtime_forever')) or 0))

        logger.debug(f"GetOwnedGames: игр в библиотеке: {len(owned)}")
        return owned


class CommunityBadges:
    """Документный источник: HTML страницы значков, нужны web-cookies"""

    def __init__(self, http, parser=None, max_pages=10, timeout=15):
        """
        Args:
            http (requests.Session): HTTP сессия
            parser (BadgePageParser, optional): Парсер страницы
            max_pages (int): Ограничение на число страниц
            timeout (float): Таймаут одного запроса в секундах
        """
        self.http = http
        self.parser = parser or BadgePageParser()
        self.max_pages = max_pages
        self.timeout = timeout

    def fetch_blocks(self, account) -> List[BadgeBlock]:
        """
        Постраничный обход страницы значков

        Args:
            account (AccountSession): Сессия с web-cookies

        Returns:
            list: BadgeBlock всех страниц; при ошибке - то, что успели собрать
        """
        if not account.has_web_session:
            return []

        headers = {'Cookie': account.cookie_header()}
        blocks = []
        seen = set()

        for page in range(1, self.max_pages + 1):
            try:
                response = self.http.get(COMMUNITY_BADGES_URL, params={'l': 'english', 'p': page},
                                         headers=headers, timeout=self.timeout)
                if not response.ok:
                    logger.warning(f"Страница значков {page}: HTTP {response.status_code}")
                    break
                page_blocks = self.parser.parse(response.text)
            except requests.RequestException as e:
                logger.warning(f"Страница значков {page}: ошибка запроса: {e}")
                break

            if not page_blocks:
                break

            new_blocks = [b for b in page_blocks if b.app_id not in seen]
            if not new_blocks:
                break
            seen.update(b.app_id for b in new_blocks)
            blocks.extend(new_blocks)

        if blocks:
            positive = sum(1 for b in blocks if b.remaining is not None and b.remaining > 0)
            zero = sum(1 for b in blocks if b.remaining == 0)
            hours_tagged = sum(1 for b in blocks if b.hours is not None)
            unknown = sum(1 for b in blocks if b.outcome in (ParseOutcome.UNMATCHED, ParseOutcome.AMBIGUOUS))
            logger.info(f"Разбор страницы значков: всего={len(blocks)} с остатком={positive} "
                        f"без остатка={zero} с часами={hours_tagged} неизвестно={unknown}")
        return blocks

    def fetch_document_reward_counts(self, account) -> List[RewardRecord]:
        return [block.to_record() for block in self.fetch_blocks(account)]


class StoreCategoryProbe:
    """Проверка в магазине: есть ли у игры категория карточек"""

    def __init__(self, http, timeout=15):
        self.http = http
        self.timeout = timeout

    def __call__(self, app_id: int) -> Optional[bool]:
        """
        Классификация одной игры

        Args:
            app_id (int): appid игры

        Returns:
            bool: True/False по ответу магазина; None если ответа нет (не кэшируется)
        """
        try:
            response = self.http.get(STORE_APPDETAILS_URL,
                                     params={'appids': app_id, 'filters': 'categories'},
                                     timeout=self.timeout)
            if not response.ok:
                logger.debug(f"appdetails {app_id}: HTTP {response.status_code}")
                return None
            payload = response.json()
        except requests.RequestException as e:
            logger.debug(f"appdetails {app_id}: ошибка запроса: {e}")
            return None
        except ValueError:
            logger.debug(f"appdetails {app_id}: некорректный JSON")
            return None

        entry = payload.get(str(app_id)) if isinstance(payload, dict) else None
        if not isinstance(entry, dict):
            return None
        if not entry.get('success'):
            return False

        data = entry.get('data')
        if not isinstance(data, dict):
            # у игр без категорий магазин отдаёт "data": []
            return False
        categories = data.get('categories') or []
        if not isinstance(categories, list):
            return None
        return any(isinstance(c, dict) and c.get('id') == TRADING_CARDS_CATEGORY for c in categories)
