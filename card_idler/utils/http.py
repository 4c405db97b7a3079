"""
HTTP клиент с повторами для запросов к Steam Web API, сообществу и магазину.
Таймауты задаются в каждом запросе адаптерами, здесь только политика повторов.
"""
from dataclasses import dataclass
from typing import Iterable

import requests
from loguru import logger
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

USER_AGENT = "card-idler/1.0"


@dataclass(frozen=True)
class HttpSettings:
    """Политика повторов HTTP запросов"""
    retries: int = 2
    backoff_factor: float = 0.5
    status_forcelist: Iterable[int] = (429, 500, 502, 503, 504)


def _build_retry(settings: HttpSettings) -> Retry:
    # только GET
    return Retry(
        total=max(0, settings.retries),
        connect=max(0, settings.retries),
        read=max(0, settings.retries),
        backoff_factor=max(0.0, settings.backoff_factor),
        status_forcelist=tuple(settings.status_forcelist),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )


def create_http_session(settings: HttpSettings = HttpSettings()) -> Session:
    """Сессия requests с политикой повторов и нашим User-Agent"""
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=_build_retry(settings))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({'User-Agent': USER_AGENT})
    logger.debug(f"HTTP сессия создана: повторов {settings.retries}, backoff {settings.backoff_factor}")
    return session
