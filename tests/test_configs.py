import pytest

from card_idler.configs import IdlerSettings, load_config, load_settings
from card_idler.discovery.ranker import MergePolicy
from card_idler.errors import ConfigError


def test_packaged_defaults():
    assert load_config("idler.yaml")['discovery']['target_parallel'] == 20

    settings = load_settings(environ={})

    assert settings.api_key is None
    assert settings.target_parallel == 20
    assert settings.display_limit == 32
    assert settings.merge_policy is MergePolicy.DOCUMENT_PREFERRED
    assert settings.refresh_interval == 1200
    assert settings.probe_budget == 2400


def test_environment_overrides():
    settings = load_settings(environ={'STEAM_API_KEY': '  abc  ', 'IDLER_TARGET_PARALLEL': '7'})

    assert settings.api_key == "abc"
    assert settings.target_parallel == 7


def test_user_file_overrides_defaults(tmp_path):
    path = tmp_path / "my.yaml"
    path.write_text(
        "discovery:\n"
        "  merge_policy: primary_preferred\n"
        "  manual_app_ids: '730, 440'\n"
        "probes:\n"
        "  budget: 10\n",
        encoding='utf-8',
    )

    settings = load_settings(path, environ={})

    assert settings.merge_policy is MergePolicy.PRIMARY_PREFERRED
    assert settings.manual_app_ids == [730, 440]
    assert settings.probe_budget == 10
    assert settings.connect_timeout == 60


def test_missing_user_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml", environ={})


@pytest.mark.parametrize("content", [
    "discovery:\n  merge_policy: newest\n",
    "discovery:\n  target_parallel: 0\n",
    "discovery:\n  manual_app_ids: [abc]\n",
    "refresh: 5\n",
])
def test_invalid_values(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding='utf-8')

    with pytest.raises(ConfigError):
        load_settings(path, environ={})


def test_invalid_target_from_environment():
    with pytest.raises(ConfigError):
        load_settings(environ={'IDLER_TARGET_PARALLEL': 'many'})


def test_active_limit_is_capped_by_display_limit():
    assert IdlerSettings(target_parallel=50).active_limit == 32
    assert IdlerSettings(target_parallel=5).active_limit == 5


def test_with_overrides_drops_none():
    settings = IdlerSettings(target_parallel=5)

    assert settings.with_overrides(api_key=None) is settings
    updated = settings.with_overrides(target_parallel=8, manual_app_ids=["10"])
    assert updated.target_parallel == 8
    assert updated.manual_app_ids == [10]
    with pytest.raises(ConfigError):
        settings.with_overrides(target_parallel=-1)
