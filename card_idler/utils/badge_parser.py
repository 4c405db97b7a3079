"""
Разбор страницы значков Steam Community.
Находит блок каждой игры и извлекает из текста оставшиеся дропы и часы в игре.
Неоднозначный или нераспознанный блок даёт remaining=None, а не ноль.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from loguru import logger

from card_idler.records import RewardRecord

GAMECARDS_HREF = re.compile(r'/(?:id|profiles)/[^/"]+/gamecards/(\d+)/?')

NO_DROPS = re.compile(r'No card drops remaining', re.IGNORECASE)
DIRECT_DROPS = re.compile(r'(\d+)\s+card drops? remaining', re.IGNORECASE)
DROPS_EARNED = re.compile(r'Card drops earned:\s*(\d+)', re.IGNORECASE)
DROPS_RECEIVED = re.compile(r'Card drops received:\s*(\d+)', re.IGNORECASE)
HOURS_ON_RECORD = re.compile(r'([0-9][0-9,]*(?:\.[0-9]+)?)\s*hrs?\s+on\s+record', re.IGNORECASE)


class ParseOutcome(str, Enum):
    """Как было получено число оставшихся дропов"""
    NO_DROPS = "no_drops"
    DIRECT = "direct"
    DERIVED = "derived"
    UNMATCHED = "unmatched"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class BadgeBlock:
    """Результат разбора блока одной игры"""
    app_id: int
    outcome: ParseOutcome
    remaining: Optional[int] = None
    hours: Optional[float] = None

    def to_record(self) -> RewardRecord:
        return RewardRecord(app_id=self.app_id, remaining=self.remaining, hours=self.hours)


def classify_drops(text: str) -> Tuple[ParseOutcome, Optional[int]]:
    """
    Определение оставшихся дропов по тексту блока

    Args:
        text (str): Текст блока одной игры

    Returns:
        tuple: (ParseOutcome, remaining или None)
    """
    no_drops = bool(NO_DROPS.search(text))
    direct = {int(value) for value in DIRECT_DROPS.findall(text)}

    if no_drops and direct - {0}:
        return ParseOutcome.AMBIGUOUS, None
    if no_drops:
        return ParseOutcome.NO_DROPS, 0

    if len(direct) > 1:
        return ParseOutcome.AMBIGUOUS, None
    if direct:
        return ParseOutcome.DIRECT, direct.pop()

    earned = DROPS_EARNED.search(text)
    received = DROPS_RECEIVED.search(text)
    if earned and received:
        earned_count = int(earned.group(1))
        received_count = int(received.group(1))
        if earned_count < received_count:
            return ParseOutcome.AMBIGUOUS, None
        return ParseOutcome.DERIVED, max(0, earned_count - received_count)

    return ParseOutcome.UNMATCHED, None


def extract_hours(text: str) -> Optional[float]:
    """Часы в игре ("12.5 hrs on record") или None"""
    match = HOURS_ON_RECORD.search(text)
    if not match:
        return None
    try:
        return float(match.group(1).replace(',', ''))
    except ValueError:
        return None


class BadgePageParser:
    """Парсер HTML страницы значков"""

    def __init__(self, row_class="badge_row"):
        """
        Args:
            row_class (str): CSS-класс контейнера одного значка
        """
        self.row_class = row_class

    def parse(self, html: str) -> List[BadgeBlock]:
        """
        Разбор одной страницы значков

        Args:
            html (str): HTML страницы

        Returns:
            list: BadgeBlock для каждой найденной игры в порядке появления
        """
        if not html:
            return []

        soup = BeautifulSoup(html, "html.parser")
        anchors = {}
        for anchor in soup.find_all('a', href=True):
            match = GAMECARDS_HREF.search(anchor['href'])
            if match:
                anchors[id(anchor)] = (anchor, int(match.group(1)))

        blocks = []
        seen = set()
        for anchor, app_id in anchors.values():
            if app_id in seen:
                continue
            seen.add(app_id)

            container = anchor.find_parent(class_=self.row_class)
            if container is not None:
                text = container.get_text(' ', strip=True)
            else:
                text = self._text_until_next_game(anchor, app_id, anchors)

            outcome, remaining = classify_drops(text)
            blocks.append(BadgeBlock(
                app_id=app_id,
                outcome=outcome,
                remaining=remaining,
                hours=extract_hours(text),
            ))

        if blocks:
            ambiguous = sum(1 for b in blocks if b.outcome == ParseOutcome.AMBIGUOUS)
            if ambiguous:
                logger.debug(f"Неоднозначных блоков на странице: {ambiguous}")

        return blocks

    @staticmethod
    def _text_until_next_game(anchor, app_id, anchors) -> str:
        """Текст от ссылки игры до ссылки следующей игры (разметка без контейнеров строк)"""
        parts = []
        for element in anchor.next_elements:
            if isinstance(element, Tag):
                other = anchors.get(id(element))
                if other is not None and other[1] != app_id:
                    break
            elif isinstance(element, NavigableString) and not isinstance(element, Comment):
                text = element.strip()
                if text:
                    parts.append(text)
        return ' '.join(parts)
