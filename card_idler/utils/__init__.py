"""
Вспомогательные утилиты: источники данных, кэш, сессия, таймеры.
"""
from .badge_parser import BadgePageParser, BadgeBlock, ParseOutcome
from .capability_cache import CapabilityCache
from .reward_sources import SteamWebApi, CommunityBadges, StoreCategoryProbe
from .session import AccountSession, SessionClient, SessionListener
from .timers import TimerFactory, PeriodicTimer

# Реальный клиент Steam (steam_session) импортируется только при запуске,
# ему нужен необязательный extra [steam].

__all__ = [
    'BadgePageParser',
    'BadgeBlock',
    'ParseOutcome',
    'CapabilityCache',
    'SteamWebApi',
    'CommunityBadges',
    'StoreCategoryProbe',
    'AccountSession',
    'SessionClient',
    'SessionListener',
    'TimerFactory',
    'PeriodicTimer',
]
