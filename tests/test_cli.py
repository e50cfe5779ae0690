from __future__ import annotations

import logging

import pytest

from mqtt2coap import cli
from mqtt2coap._logfmt import TRACE
from mqtt2coap.config import BridgeConfig
from mqtt2coap.exceptions import SubscriptionError


@pytest.mark.parametrize(
    ("argv", "level"),
    [
        ([], logging.ERROR),
        (["-v"], logging.INFO),
        (["-d"], logging.DEBUG),
        (["-t"], TRACE),
        (["-v", "-d", "-t"], TRACE),
    ],
)
def test_log_level_flags(argv: list[str], level: int) -> None:
    assert cli.get_loglevel(cli._parse_args(argv)) == level


def test_flags_override_config(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[BridgeConfig] = []

    async def fake_serve(config: BridgeConfig) -> None:
        seen.append(config)

    monkeypatch.setattr(cli, "_serve", fake_serve)
    monkeypatch.setenv("MQTT2COAP_MQTT_HOST", "env.local")

    code = cli.main(
        [
            "--mqtt-port",
            "1884",
            "--topic-prefix",
            "zigbee2mqtt/",
            "--topics",
            "a,b",
            "--coap-url",
            "coap://store.local/store_data",
            "--timeout",
            "5",
        ]
    )

    assert code == cli.EXIT_OK
    (config,) = seen
    assert config.mqtt_host == "env.local"
    assert config.mqtt_port == 1884
    assert config.subscriptions == ["zigbee2mqtt/a", "zigbee2mqtt/b"]
    assert config.coap_url == "coap://store.local/store_data"
    assert config.delivery_timeout == 5.0


def test_invalid_config_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--timeout", "0"])

    assert code == cli.EXIT_CONFIG
    assert "invalid configuration" in capsys.readouterr().err


def test_startup_failure_exits_non_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_serve(_config: BridgeConfig) -> None:
        raise SubscriptionError("Cannot connect to MQTT broker localhost:1883")

    monkeypatch.setattr(cli, "_serve", failing_serve)

    assert cli.main([]) == cli.EXIT_BROKER
