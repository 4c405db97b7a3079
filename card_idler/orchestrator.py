"""
Оркестратор idler-а карточек Steam.
Собирает все объекты процесса (настройки, HTTP, источники, кэш, супервизор,
планировщик), связывает их хуками и предоставляет CLI через click.
"""
import os
import sys
import time
from pathlib import Path

import click
from loguru import logger

from card_idler.configs import IdlerSettings, load_settings
from card_idler.connection_supervisor import ConnectionSupervisor
from card_idler.discovery.ranker import CandidateRanker
from card_idler.discovery.service import CandidateDiscovery
from card_idler.errors import ConfigError, SessionError
from card_idler.scheduler import IdlingScheduler, SchedulerState
from card_idler.utils.badge_parser import BadgePageParser
from card_idler.utils.capability_cache import CapabilityCache
from card_idler.utils.http import HttpSettings, create_http_session
from card_idler.utils.reward_sources import CommunityBadges, StoreCategoryProbe, SteamWebApi
from card_idler.utils.session import AccountSession
from card_idler.utils.timers import TimerFactory

CONSOLE_FORMAT = "<green>[{time:HH:mm:ss}]</green> <level>{message}</level>"


def setup_logging(debug=False):
    """Файловый лог с ротацией и консоль с меткой времени"""
    os.makedirs("logs", exist_ok=True)
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO", format=CONSOLE_FORMAT)
    logger.add("logs/card_idler_{time}.log", rotation="100 MB", level="DEBUG" if debug else "INFO")


def build_discovery(settings, http, cache=None):
    """
    Сборка прохода обнаружения из настроек

    Args:
        settings (IdlerSettings): Настройки
        http (requests.Session): HTTP сессия
        cache (CapabilityCache, optional): Кэш поддержки карточек

    Returns:
        CandidateDiscovery: Готовый к работе проход обнаружения
    """
    if not settings.api_key:
        return CandidateDiscovery(settings)

    cache = cache or CapabilityCache(settings.cache_path, concurrency=settings.probe_concurrency)
    ranker = CandidateRanker(
        cache=cache,
        probe=StoreCategoryProbe(http, timeout=settings.http_timeout),
        probe_budget=settings.probe_budget,
        low_playtime_minutes=settings.low_playtime_minutes,
    )
    return CandidateDiscovery(
        settings,
        web_api=SteamWebApi(http, settings.api_key, timeout=settings.http_timeout),
        community=CommunityBadges(http, BadgePageParser(), max_pages=settings.document_max_pages,
                                  timeout=settings.http_timeout),
        ranker=ranker,
    )


class Orchestrator:
    """Владелец всех объектов процесса idler-а"""

    def __init__(self, settings: IdlerSettings, session_client, timers=None, http=None):
        """
        Инициализация оркестратора

        Args:
            settings (IdlerSettings): Настройки
            session_client (SessionClient): Протокольный клиент Steam
            timers (TimerFactory, optional): Фабрика таймеров
            http (requests.Session, optional): HTTP сессия
        """
        self.settings = settings
        self.timers = timers or TimerFactory()
        self.http = http or create_http_session(HttpSettings(retries=settings.http_retries))
        self.account = AccountSession()

        self.discovery = build_discovery(settings, self.http)
        self.supervisor = ConnectionSupervisor(session_client, settings, account=self.account, timers=self.timers)
        self.scheduler = IdlingScheduler(session_client, self.account, self.discovery, settings, timers=self.timers)

        self.supervisor.on_connected(self.scheduler.reapply)
        self.supervisor.on_web_session(self.scheduler.on_web_session_ready)

        logger.info(f"Orchestrator инициализирован (цель {settings.target_parallel} игр)")

    def start(self, refresh_token) -> bool:
        """
        Подключение и запуск idle

        Raises:
            SessionError: Если подключиться не удалось

        Returns:
            bool: True если idle запущен
        """
        self.supervisor.connect(refresh_token)
        self.supervisor.start_monitoring()
        return self.scheduler.start()

    def stop(self):
        self.scheduler.stop()
        self.supervisor.stop()

    def run_forever(self, refresh_token, poll=1.0):
        """Запуск и ожидание, пока планировщик не остановится"""
        if not self.start(refresh_token):
            self.stop()
            return False
        while self.scheduler.state != SchedulerState.STOPPED:
            time.sleep(poll)
        self.stop()
        return True


def _ask_app_ids():
    raw = click.prompt("Введите appID для idle (через запятую)", default="", show_default=False)
    ids = []
    for part in raw.split(','):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids


# ===== CLI КОМАНДЫ ЧЕРЕЗ CLICK =====

@click.group()
@click.option('--debug', is_flag=True, help='Включить отладочный режим')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Свой YAML с настройками')
@click.pass_context
def cli(ctx, debug, config_path):
    """Card Idler - idle игр Steam с оставшимися дропами карточек"""
    setup_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


def _settings_from_context(ctx, **overrides) -> IdlerSettings:
    try:
        return load_settings(ctx.obj.get('config_path')).with_overrides(**overrides)
    except ConfigError as e:
        click.echo(f"❌ Ошибка конфигурации: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--username', prompt='Steam Username', help='Имя аккаунта Steam')
@click.option('--password', prompt='Steam Password', hide_input=True, help='Пароль Steam')
@click.option('--api-key', envvar='STEAM_API_KEY', help='Ключ Steam Web API')
@click.option('--target-parallel', type=int, help='Сколько игр держать в idle одновременно')
@click.option('--app-id', 'app_ids', type=int, multiple=True, help='appID для ручного режима (можно несколько)')
@click.pass_context
def run(ctx, username, password, api_key, target_parallel, app_ids):
    """Войти в Steam и запустить idle"""
    settings = _settings_from_context(ctx, api_key=api_key, target_parallel=target_parallel,
                                      manual_app_ids=list(app_ids) or None)

    if not settings.api_key and not settings.manual_app_ids:
        click.echo("⚠️ STEAM_API_KEY не задан - нужен ручной список игр")
        manual = _ask_app_ids()
        if not manual:
            click.echo("❌ Нет ни ключа API, ни списка appID", err=True)
            sys.exit(1)
        settings = settings.with_overrides(manual_app_ids=manual)

    # Реальный клиент нужен только здесь: ему требуется extra [steam]
    from card_idler.utils.steam_session import SteamSessionClient

    orchestrator = None
    try:
        client = SteamSessionClient(username)
        refresh_token = client.login(username, password)

        orchestrator = Orchestrator(settings, client)
        click.echo("🚀 Idler запущен. Ctrl+C для остановки.")
        if not orchestrator.run_forever(refresh_token):
            click.echo("⚠️ Кандидаты для idle не найдены")
            sys.exit(1)

    except SessionError as e:
        click.echo(f"❌ Ошибка входа: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\n⏹️ Остановлено пользователем")
        if orchestrator is not None:
            orchestrator.stop()
        sys.exit(130)
    except Exception as e:
        click.echo(f"❌ Ошибка: {e}", err=True)
        if orchestrator is not None:
            orchestrator.stop()
        sys.exit(1)


@cli.command()
@click.option('--steam-id', type=int, required=True, help='SteamID64 аккаунта')
@click.option('--api-key', envvar='STEAM_API_KEY', help='Ключ Steam Web API')
@click.option('--target-parallel', type=int, help='Целевое число игр')
@click.pass_context
def discover(ctx, steam_id, api_key, target_parallel):
    """Один проход обнаружения без входа в Steam (страница значков не читается)"""
    settings = _settings_from_context(ctx, api_key=api_key, target_parallel=target_parallel)
    if not settings.api_key:
        click.echo("❌ Нужен ключ API (--api-key или STEAM_API_KEY)", err=True)
        sys.exit(1)

    try:
        http = create_http_session(HttpSettings(retries=settings.http_retries))
        account = AccountSession(steam_id=steam_id, logged_on=False)
        result = build_discovery(settings, http).discover(account)
    except Exception as e:
        click.echo(f"❌ Ошибка: {e}", err=True)
        sys.exit(1)

    if not result.candidates:
        click.echo("⚠️ Кандидаты не найдены")
        return

    click.echo(f"\n📋 Кандидаты ({len(result.candidates)}):")
    for position, app_id in enumerate(result.candidates, 1):
        marker = "▶️" if position <= settings.active_limit else "  "
        click.echo(f"  {marker} {position:>3}. {app_id}")


@cli.command()
@click.option('--show-capable', is_flag=True, help='Показать appID игр с карточками')
@click.pass_context
def cache(ctx, show_capable):
    """Показать сводку кэша категорий магазина"""
    settings = _settings_from_context(ctx)
    capability_cache = CapabilityCache(settings.cache_path)

    if not Path(settings.cache_path).exists():
        click.echo(f"⚠️ Файл кэша не найден: {settings.cache_path}")
        return

    summary = capability_cache.summary()
    click.echo(f"\n📊 Кэш категорий ({settings.cache_path}):")
    click.echo(f"  • Всего записей: {summary['total']}")
    click.echo(f"  • С карточками: {summary['capable']}")
    click.echo(f"  • Без карточек: {summary['not_capable']}")

    if show_capable:
        capable = capability_cache.capable_ids()
        click.echo(f"\n🃏 Игры с карточками ({len(capable)}): {', '.join(map(str, capable)) or '-'}")


@cli.command('parse-badges')
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
def parse_badges(html_file):
    """Разобрать сохранённую страницу значков и показать результат по играм"""
    with open(html_file, 'r', encoding='utf-8') as f:
        blocks = BadgePageParser().parse(f.read())

    if not blocks:
        click.echo("⚠️ Блоки игр не найдены")
        return

    click.echo(f"\n📋 Игр на странице: {len(blocks)}")
    for block in blocks:
        remaining = block.remaining if block.remaining is not None else '?'
        hours = f"{block.hours}h" if block.hours is not None else '?'
        click.echo(f"  • {block.app_id}: осталось {remaining}, часов {hours} [{block.outcome.value}]")


if __name__ == "__main__":
    cli()
