"""
Модуль конфигурации idler-а.
Значения по умолчанию лежат в idler.yaml рядом с модулем, пользовательский
YAML и переменные окружения накладываются поверх.
"""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from loguru import logger

from card_idler.discovery.ranker import MergePolicy
from card_idler.errors import ConfigError

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG = "idler.yaml"

ENV_API_KEY = "STEAM_API_KEY"
ENV_TARGET_PARALLEL = "IDLER_TARGET_PARALLEL"


def load_config(filename):
    """Загрузка конфигурационного файла"""
    config_path = CONFIG_DIR / filename
    return _read_yaml(config_path)


def _read_yaml(config_path):
    config_path = Path(config_path)
    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)
    return None


@dataclass(frozen=True)
class IdlerSettings:
    """Настройки idler-а, собранные из YAML, окружения и CLI"""
    api_key: Optional[str] = None
    target_parallel: int = 20
    display_limit: int = 32
    merge_policy: MergePolicy = MergePolicy.DOCUMENT_PREFERRED
    manual_app_ids: List[int] = field(default_factory=list)

    refresh_interval: float = 20 * 60
    restart_hours_threshold: float = 2.0
    restart_delay: float = 3

    connectivity_poll_interval: float = 10
    fallback_reconnect_delay: float = 15
    connect_timeout: float = 60
    max_reconnect_attempts: int = 10
    reconnect_cooldown: float = 300
    web_session_wait: float = 4

    probe_concurrency: int = 6
    probe_budget: int = 2400
    low_playtime_minutes: int = 30
    cache_path: str = "store-category-cache.json"

    http_timeout: float = 15
    http_retries: int = 2
    document_max_pages: int = 10

    @property
    def active_limit(self) -> int:
        """Жёсткий потолок размера активного набора"""
        return min(self.target_parallel, self.display_limit)

    def with_overrides(self, **overrides) -> "IdlerSettings":
        """Копия настроек с заменой непустых значений"""
        clean = {key: value for key, value in overrides.items() if value is not None}
        if not clean:
            return self
        return validate(replace(self, **clean))


# Соответствие "секция.ключ" в YAML -> поле IdlerSettings
_YAML_FIELDS = {
    ('discovery', 'target_parallel'): 'target_parallel',
    ('discovery', 'display_limit'): 'display_limit',
    ('discovery', 'merge_policy'): 'merge_policy',
    ('discovery', 'manual_app_ids'): 'manual_app_ids',
    ('discovery', 'api_key'): 'api_key',
    ('refresh', 'interval'): 'refresh_interval',
    ('refresh', 'restart_hours_threshold'): 'restart_hours_threshold',
    ('refresh', 'restart_delay'): 'restart_delay',
    ('connection', 'poll_interval'): 'connectivity_poll_interval',
    ('connection', 'fallback_reconnect_delay'): 'fallback_reconnect_delay',
    ('connection', 'connect_timeout'): 'connect_timeout',
    ('connection', 'max_reconnect_attempts'): 'max_reconnect_attempts',
    ('connection', 'reconnect_cooldown'): 'reconnect_cooldown',
    ('connection', 'web_session_wait'): 'web_session_wait',
    ('probes', 'concurrency'): 'probe_concurrency',
    ('probes', 'budget'): 'probe_budget',
    ('probes', 'low_playtime_minutes'): 'low_playtime_minutes',
    ('probes', 'cache_path'): 'cache_path',
    ('http', 'timeout'): 'http_timeout',
    ('http', 'retries'): 'http_retries',
    ('http', 'document_max_pages'): 'document_max_pages',
}


def _merge_sections(base: Dict, extra: Dict) -> Dict:
    merged = {section: dict(values or {}) for section, values in base.items()}
    for section, values in (extra or {}).items():
        if not isinstance(values, dict):
            raise ConfigError(f"Секция '{section}' должна быть словарём")
        merged.setdefault(section, {}).update(values)
    return merged


def _parse_app_ids(raw) -> List[int]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(',')
    ids = []
    for item in raw:
        text = str(item).strip()
        if not text:
            continue
        try:
            ids.append(int(text))
        except ValueError:
            raise ConfigError(f"Некорректный appid: {text!r}")
    return ids


def validate(settings: IdlerSettings) -> IdlerSettings:
    """
    Проверка согласованности настроек

    Args:
        settings (IdlerSettings): Проверяемые настройки

    Returns:
        IdlerSettings: Те же настройки с нормализованной политикой слияния

    Raises:
        ConfigError: Если значение вне допустимого диапазона
    """
    try:
        policy = MergePolicy(settings.merge_policy)
    except ValueError:
        known = ', '.join(p.value for p in MergePolicy)
        raise ConfigError(f"Неизвестная merge_policy '{settings.merge_policy}' (допустимо: {known})")

    if settings.target_parallel < 1:
        raise ConfigError("target_parallel должен быть >= 1")
    if settings.display_limit < 1:
        raise ConfigError("display_limit должен быть >= 1")
    if settings.probe_concurrency < 1 or settings.probe_budget < 0:
        raise ConfigError("probes.concurrency должен быть >= 1, probes.budget >= 0")

    for name in ('refresh_interval', 'connectivity_poll_interval', 'fallback_reconnect_delay',
                 'connect_timeout', 'http_timeout'):
        if getattr(settings, name) <= 0:
            raise ConfigError(f"{name} должен быть положительным")

    api_key = settings.api_key.strip() if settings.api_key else None
    return replace(settings, merge_policy=policy, api_key=api_key or None,
                   manual_app_ids=_parse_app_ids(settings.manual_app_ids))


def load_settings(config_path=None, environ=None) -> IdlerSettings:
    """
    Сборка настроек: idler.yaml -> пользовательский файл -> окружение

    Args:
        config_path (str, optional): Путь к пользовательскому YAML
        environ (dict, optional): Окружение (по умолчанию os.environ)

    Returns:
        IdlerSettings: Проверенные настройки
    """
    environ = os.environ if environ is None else environ
    sections = load_config(DEFAULT_CONFIG) or {}

    if config_path:
        user_config = _read_yaml(config_path)
        if user_config is None:
            raise ConfigError(f"Файл конфигурации не найден: {config_path}")
        if not isinstance(user_config, dict):
            raise ConfigError(f"Файл конфигурации должен содержать словарь: {config_path}")
        sections = _merge_sections(sections, user_config)
        logger.info(f"Конфигурация загружена из {config_path}")

    values = {}
    for (section, key), field_name in _YAML_FIELDS.items():
        section_values = sections.get(section) or {}
        if key in section_values and section_values[key] is not None:
            values[field_name] = section_values[key]

    if environ.get(ENV_API_KEY):
        values['api_key'] = environ[ENV_API_KEY]
    if environ.get(ENV_TARGET_PARALLEL):
        try:
            values['target_parallel'] = int(environ[ENV_TARGET_PARALLEL])
        except ValueError:
            raise ConfigError(f"{ENV_TARGET_PARALLEL} должен быть целым числом")

    try:
        settings = IdlerSettings(**values)
    except TypeError as e:
        raise ConfigError(f"Ошибка конфигурации: {e}")
    return validate(settings)
