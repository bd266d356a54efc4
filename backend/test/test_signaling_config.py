"""ICE 서버 설정 테스트."""

from modules.signaling import ICEServerConfig
from modules.signaling.config import PUBLIC_STUN_URLS


def test_defaults_to_public_stun_only():
    config = ICEServerConfig()

    assert not config.has_turn_server
    assert config.as_ice_servers() == [{"urls": url} for url in PUBLIC_STUN_URLS]


def test_custom_stun_comes_first_without_duplicates():
    config = ICEServerConfig(stun_urls=("stun:stun.example.com:3478", PUBLIC_STUN_URLS[0]))

    assert [s["urls"] for s in config.as_ice_servers()] == [
        "stun:stun.example.com:3478",
        *PUBLIC_STUN_URLS,
    ]


def test_turn_entries_carry_credentials():
    config = ICEServerConfig(
        turn_urls=("turn:turn.example.com:3478", "turns:turn.example.com:5349"),
        turn_username="user",
        turn_credential="pass",
    )

    turn = [s for s in config.as_ice_servers() if s["urls"].startswith("turn")]

    assert config.has_turn_server
    assert turn == [
        {"urls": "turn:turn.example.com:3478", "username": "user", "credential": "pass"},
        {"urls": "turns:turn.example.com:5349", "username": "user", "credential": "pass"},
    ]


def test_turn_without_credentials_is_left_out():
    config = ICEServerConfig(turn_urls=("turn:turn.example.com:3478",), turn_username="user")

    assert not config.has_turn_server
    assert all(not s["urls"].startswith("turn") for s in config.as_ice_servers())


def test_from_env_splits_comma_separated_urls(monkeypatch):
    monkeypatch.setenv("STUN_SERVER_URL", " stun:a.example.com:3478 , ")
    monkeypatch.setenv("TURN_SERVER_URL", "turn:b.example.com:3478,turns:b.example.com:5349")
    monkeypatch.setenv("TURN_USERNAME", "user")
    monkeypatch.setenv("TURN_CREDENTIAL", "")

    config = ICEServerConfig.from_env()

    assert config.stun_urls == ("stun:a.example.com:3478",)
    assert config.turn_urls == ("turn:b.example.com:3478", "turns:b.example.com:5349")
    assert config.turn_credential is None
    assert not config.has_turn_server
