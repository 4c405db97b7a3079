import json

import pytest
from click.testing import CliRunner
from loguru import logger

from card_idler.orchestrator import cli

from test_badge_parser import BADGES_PAGE


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv('STEAM_API_KEY', raising=False)
    monkeypatch.delenv('IDLER_TARGET_PARALLEL', raising=False)
    yield CliRunner()
    logger.remove()


def test_parse_badges(runner, tmp_path):
    page = tmp_path / "badges.html"
    page.write_text(BADGES_PAGE, encoding='utf-8')

    result = runner.invoke(cli, ['parse-badges', str(page)])

    assert result.exit_code == 0
    assert "Игр на странице: 4" in result.output
    assert "730: осталось 3, часов 12.5h [direct]" in result.output
    assert "620: осталось ?, часов ? [unmatched]" in result.output


def test_parse_badges_empty_page(runner, tmp_path):
    page = tmp_path / "empty.html"
    page.write_text("<html></html>", encoding='utf-8')

    result = runner.invoke(cli, ['parse-badges', str(page)])

    assert result.exit_code == 0
    assert "Блоки игр не найдены" in result.output


def test_cache_summary(runner, tmp_path):
    cache_file = tmp_path / "cards.json"
    cache_file.write_text(json.dumps({"730": True, "10": False, "440": True}), encoding='utf-8')
    config = tmp_path / "idler.yaml"
    config.write_text(f"probes:\n  cache_path: '{cache_file.as_posix()}'\n", encoding='utf-8')

    result = runner.invoke(cli, ['--config', str(config), 'cache', '--show-capable'])

    assert result.exit_code == 0
    assert "Всего записей: 3" in result.output
    assert "С карточками: 2" in result.output
    assert "440, 730" in result.output


def test_cache_missing_file(runner):
    result = runner.invoke(cli, ['cache'])

    assert result.exit_code == 0
    assert "Файл кэша не найден" in result.output


def test_bad_config_exits_with_error(runner, tmp_path):
    config = tmp_path / "bad.yaml"
    config.write_text("discovery:\n  merge_policy: newest\n", encoding='utf-8')

    result = runner.invoke(cli, ['--config', str(config), 'cache'])

    assert result.exit_code == 1


def test_discover_requires_api_key(runner):
    result = runner.invoke(cli, ['discover', '--steam-id', '1'])

    assert result.exit_code == 1
