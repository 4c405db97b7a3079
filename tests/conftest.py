"""
Общие фейки для тестов: сессия Steam, таймеры с ручным запуском и источники наград.
"""
import pytest

from card_idler.configs import IdlerSettings
from card_idler.discovery.ranker import CandidateRanker
from card_idler.discovery.service import CandidateDiscovery
from card_idler.errors import SessionError
from card_idler.utils.capability_cache import CapabilityCache
from card_idler.utils.session import AccountSession


class FakeSession:
    """SessionClient, который запоминает объявления и сразу подтверждает вход"""

    def __init__(self, steam_id=76561198000000001):
        self.steam_id = steam_id
        self.listener = None
        self.declared = []
        self.connect_calls = 0
        self.web_session_requests = 0
        self.auto_relogin = False
        self.online = False
        self.emit_logged_on = True
        self.fail_with = None

    def set_listener(self, listener):
        self.listener = listener

    def connect(self, refresh_token, timeout):
        self.connect_calls += 1
        if self.fail_with is not None:
            raise SessionError(self.fail_with)
        if self.emit_logged_on:
            self.online = True
            self.listener.handle_logged_on(self.steam_id)

    def is_connected(self):
        return self.online

    def enable_auto_relogin(self):
        self.auto_relogin = True

    def request_web_session(self):
        self.web_session_requests += 1

    def declare_active_applications(self, app_ids):
        self.declared.append(list(app_ids))


class FakeTimer:
    def __init__(self, delay, callback, name):
        self.delay = delay
        self.callback = callback
        self.name = name
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class FakeTimers:
    """TimerFactory без потоков: таймеры срабатывают только через fire()"""

    def __init__(self):
        self.created = []

    def periodic(self, interval, callback, name="periodic"):
        timer = FakeTimer(interval, callback, name)
        self.created.append(timer)
        return timer

    def once(self, delay, callback, name="once"):
        timer = FakeTimer(delay, callback, name)
        self.created.append(timer)
        return timer

    def named(self, name):
        """Последний созданный таймер с указанным именем"""
        for timer in reversed(self.created):
            if timer.name == name:
                return timer
        return None


class FakeWebApi:
    def __init__(self, records=None, owned=None, error=None):
        self.records = list(records or [])
        self.owned = list(owned or [])
        self.error = error
        self.owned_calls = 0

    def fetch_reward_counts(self, account):
        if self.error is not None:
            raise self.error
        return list(self.records)

    def fetch_owned_catalog(self, account):
        self.owned_calls += 1
        return list(self.owned)


class FakeCommunity:
    def __init__(self, records=None):
        self.records = list(records or [])
        self.calls = 0

    def fetch_document_reward_counts(self, account):
        self.calls += 1
        return list(self.records)


@pytest.fixture
def settings():
    return IdlerSettings(api_key="test-key", target_parallel=5, web_session_wait=0)


@pytest.fixture
def account():
    return AccountSession(steam_id=76561198000000001, logged_on=True)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def cache(tmp_path):
    return CapabilityCache(tmp_path / "cache.json", concurrency=2)


@pytest.fixture
def make_discovery(settings, cache):
    """Сборка CandidateDiscovery на фейковых источниках"""

    def build(web_api, community=None, probe=None, settings_override=None):
        ranker = CandidateRanker(cache=cache, probe=probe or (lambda app_id: False))
        return CandidateDiscovery(settings_override or settings, web_api=web_api,
                                  community=community or FakeCommunity(), ranker=ranker)

    return build
