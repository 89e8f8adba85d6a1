import pytest

from scorely.misc import env as env_mod
from scorely.misc.argparser import get_cli_args

ENV_VARS = (
    "MQTT_BROKER",
    "MQTT_PORT",
    "MQTT_USERNAME",
    "MQTT_PASSWORD",
    "MQTT_TLS",
    "APP_PORT",
    "DATA_DIR",
    "PAIRING_WINDOW_MS",
    "AUTO_PROVISION",
    "SESSION_RETENTION_MS",
    "SESSION_IDLE_TTL_MS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep any developer .env out of the tests
    monkeypatch.setattr(env_mod, "load_dotenv", lambda: False)
    monkeypatch.chdir(tmp_path)


def test_defaults(monkeypatch):
    monkeypatch.setenv("MQTT_BROKER", "broker.local")
    monkeypatch.setenv("MQTT_PORT", "1883")

    conf = env_mod.get_env_vars()

    assert conf.mqtt_broker == "broker.local"
    assert conf.mqtt_port == 1883
    assert conf.app_port == 8000
    assert conf.pairing_window_ms == 60_000
    assert conf.auto_provision is True
    assert conf.mqtt_tls is False
    assert conf.mqtt_username is None
    assert conf.session_retention_ms == 3_600_000
    assert conf.session_idle_ttl_ms == 21_600_000


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MQTT_BROKER", "broker.local")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("MQTT_TLS", "true")
    monkeypatch.setenv("MQTT_USERNAME", "engine")
    monkeypatch.setenv("MQTT_PASSWORD", "secret")
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PAIRING_WINDOW_MS", "30000")
    monkeypatch.setenv("AUTO_PROVISION", "off")

    conf = env_mod.get_env_vars()

    assert conf.mqtt_tls is True
    assert conf.mqtt_username == "engine"
    assert conf.data_dir.is_dir()
    assert conf.pairing_window_ms == 30_000
    assert conf.auto_provision is False


def test_invalid_env_exits(monkeypatch):
    monkeypatch.setenv("MQTT_PORT", "99999")
    monkeypatch.setenv("PAIRING_WINDOW_MS", "-5")

    with pytest.raises(SystemExit) as exc:
        env_mod.get_env_vars()
    assert exc.value.code == 1


def test_password_without_username_is_rejected(monkeypatch, capsys):
    monkeypatch.setenv("MQTT_BROKER", "broker.local")
    monkeypatch.setenv("MQTT_PORT", "1883")
    monkeypatch.setenv("MQTT_PASSWORD", "secret")

    with pytest.raises(SystemExit):
        env_mod.get_env_vars()

    err = capsys.readouterr().err
    assert "MQTT_PASSWORD" in err
    assert "MQTT_USERNAME" in err


def test_cli_args():
    args = get_cli_args(["-l", "DBG", "--no-api"])
    assert args.log_level == 10
    assert args.no_api is True
    assert args.host == "0.0.0.0"
