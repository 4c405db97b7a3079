from unittest.mock import Mock

import requests

from card_idler.records import OwnedApp, RewardRecord
from card_idler.utils.reward_sources import (
    COMMUNITY_BADGES_URL,
    CommunityBadges,
    StoreCategoryProbe,
    SteamWebApi,
    remaining_from_badge,
)
from card_idler.utils.session import AccountSession


def _response(payload=None, status=200, text=""):
    response = Mock()
    response.ok = status < 400
    response.status_code = status
    response.text = text
    response.json.return_value = payload
    return response


def _badge_page(*app_ids):
    rows = ''.join(
        f'<div class="badge_row"><a href="/id/me/gamecards/{app_id}/"></a>1 card drop remaining</div>'
        for app_id in app_ids
    )
    return f'<html><body>{rows}</body></html>'


def test_remaining_aliases():
    assert remaining_from_badge({'cards_remaining': 2}) == 2
    assert remaining_from_badge({'card_drop_remaining': 0}) == 0
    assert remaining_from_badge({'card_drop_count': 4.0}) == 4
    assert remaining_from_badge({'card_drop_count': "4"}) is None
    assert remaining_from_badge({'cards_remaining': True}) is None
    assert remaining_from_badge({}) is None


def test_fetch_reward_counts():
    http = Mock()
    http.get.return_value = _response({'response': {'badges': [
        {'badgeid': 1, 'appid': 730, 'cards_remaining': 3},
        {'badgeid': 13, 'level': 5},
        {'appid': 440},
    ]}})
    api = SteamWebApi(http, "key")

    records = api.fetch_reward_counts(AccountSession(steam_id=42))

    assert records == [RewardRecord(730, remaining=3), RewardRecord(440, remaining=None)]
    params = http.get.call_args.kwargs['params']
    assert params['key'] == "key"
    assert params['steamid'] == 42


def test_fetch_reward_counts_without_steam_id_does_not_call_network():
    http = Mock()

    assert SteamWebApi(http, "key").fetch_reward_counts(AccountSession()) == []
    http.get.assert_not_called()


def test_transport_error_returns_empty():
    http = Mock()
    http.get.side_effect = requests.ConnectionError("reset")
    api = SteamWebApi(http, "key")

    assert api.fetch_reward_counts(AccountSession(steam_id=1)) == []
    assert api.fetch_owned_catalog(AccountSession(steam_id=1)) == []


def test_bad_status_and_bad_json_return_empty():
    http = Mock()
    http.get.return_value = _response(status=403)
    assert SteamWebApi(http, "key").fetch_reward_counts(AccountSession(steam_id=1)) == []

    broken = _response()
    broken.json.side_effect = ValueError("not json")
    http.get.return_value = broken
    assert SteamWebApi(http, "key").fetch_reward_counts(AccountSession(steam_id=1)) == []


def test_fetch_owned_catalog():
    http = Mock()
    http.get.return_value = _response({'response': {'game_count': 2, 'games': [
        {'appid': 10, 'playtime_forever': 0},
        {'appid': 20, 'playtime_forever': 95},
        {'name': 'broken'},
    ]}})

    owned = SteamWebApi(http, "key").fetch_owned_catalog(AccountSession(steam_id=1))

    assert owned == [OwnedApp(10, 0), OwnedApp(20, 95)]


def test_community_badges_pages_until_no_new_ids():
    http = Mock()
    http.get.side_effect = [
        _response(text=_badge_page(730, 440)),
        _response(text=_badge_page(570)),
        _response(text=_badge_page(570)),
    ]
    account = AccountSession(steam_id=1)
    account.set_web_cookies({'steamLoginSecure': 'abc'})

    records = CommunityBadges(http).fetch_document_reward_counts(account)

    assert [r.app_id for r in records] == [730, 440, 570]
    assert all(r.remaining == 1 for r in records)
    assert http.get.call_count == 3
    first = http.get.call_args_list[0]
    assert first.args[0] == COMMUNITY_BADGES_URL
    assert first.kwargs['params'] == {'l': 'english', 'p': 1}
    assert first.kwargs['headers'] == {'Cookie': 'steamLoginSecure=abc'}


def test_community_badges_respects_page_limit():
    http = Mock()
    http.get.side_effect = [_response(text=_badge_page(page)) for page in range(1, 10)]
    account = AccountSession(steam_id=1)
    account.set_web_cookies({'a': 'b'})

    records = CommunityBadges(http, max_pages=2).fetch_document_reward_counts(account)

    assert [r.app_id for r in records] == [1, 2]


def test_community_badges_keeps_collected_pages_on_error():
    http = Mock()
    http.get.side_effect = [_response(text=_badge_page(730)), requests.Timeout("slow")]
    account = AccountSession(steam_id=1)
    account.set_web_cookies({'a': 'b'})

    assert [r.app_id for r in CommunityBadges(http).fetch_document_reward_counts(account)] == [730]


def test_community_badges_needs_cookies():
    http = Mock()

    assert CommunityBadges(http).fetch_blocks(AccountSession(steam_id=1)) == []
    http.get.assert_not_called()


def test_store_probe_detects_trading_cards():
    http = Mock()
    http.get.return_value = _response({'730': {'success': True, 'data': {
        'categories': [{'id': 2, 'description': 'Single-player'}, {'id': 29, 'description': 'Steam Trading Cards'}]
    }}})

    assert StoreCategoryProbe(http)(730) is True


def test_store_probe_negative_answers():
    http = Mock()
    probe = StoreCategoryProbe(http)

    http.get.return_value = _response({'10': {'success': True, 'data': {'categories': [{'id': 2}]}}})
    assert probe(10) is False

    http.get.return_value = _response({'10': {'success': False}})
    assert probe(10) is False

    http.get.return_value = _response({'10': {'success': True, 'data': []}})
    assert probe(10) is False


def test_store_probe_unknown_on_failure():
    http = Mock()
    probe = StoreCategoryProbe(http)

    http.get.side_effect = requests.ConnectionError("down")
    assert probe(10) is None

    http.get.side_effect = None
    http.get.return_value = _response(status=429)
    assert probe(10) is None

    http.get.return_value = _response({'other': {}})
    assert probe(10) is None
