"""
Записи о наградах и библиотеке, которые ходят между адаптерами и ранжированием.
Живут один цикл обнаружения и никуда не сохраняются.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RewardRecord:
    """Сведения об оставшихся дропах карточек для одной игры"""
    app_id: int
    remaining: Optional[int] = None  # None - неизвестно, не ноль
    hours: Optional[float] = None  # часы в игре со страницы значков

    @property
    def has_remaining(self) -> bool:
        return self.remaining is not None and self.remaining > 0


@dataclass(frozen=True)
class OwnedApp:
    """Игра из библиотеки аккаунта"""
    app_id: int
    playtime_minutes: int = 0
