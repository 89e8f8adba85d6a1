import os
import sys
from pathlib import Path
from typing import Final, NamedTuple

from dotenv import load_dotenv

from scorely import __prog__

from .utils import cerr

_PORT_MIN: Final = 1
_PORT_MAX: Final = 65535

_DEFAULT_APP_PORT: Final = 8000
_DEFAULT_PAIRING_WINDOW_MS: Final = 60_000
_DEFAULT_RETENTION_MS: Final = 3_600_000
_DEFAULT_IDLE_TTL_MS: Final = 21_600_000

_TRUTHY: Final = frozenset({"1", "true", "yes", "on"})
_FALSY: Final = frozenset({"0", "false", "no", "off"})


class EnvConf(NamedTuple):
    mqtt_broker: str
    mqtt_port: int
    mqtt_username: str | None
    mqtt_password: str | None
    mqtt_tls: bool
    app_port: int
    data_dir: Path
    pairing_window_ms: int
    auto_provision: bool
    session_retention_ms: int
    session_idle_ttl_ms: int


def _ensure_valid_port(name: str, default: int | None = None) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        if default is not None:
            return default
        msg = f"[cyan]{name}[/] is not set"
        raise ValueError(msg)

    try:
        port = int(val)
    except ValueError as e:
        msg = f"[cyan]{name}[/] is not an integer: {val}"
        raise ValueError(msg) from e
    else:
        if not (_PORT_MIN <= port <= _PORT_MAX):
            msg = f"[cyan]{name}[/] is out of range: {val}"
            raise ValueError(msg)

    return port


def _ensure_valid_broker(name: str) -> str:
    val = os.getenv(name)
    if val is None or not val.strip():
        msg = f"[cyan]{name}[/] is not set"
        raise ValueError(msg)

    return val.strip()


def _ensure_valid_bool(name: str, *, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default

    lowered = val.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False

    msg = f"[cyan]{name}[/] is not a boolean: {val}"
    raise ValueError(msg)


def _ensure_valid_password(name: str, user_name: str) -> str | None:
    val = os.getenv(name) or None
    if val is not None and not os.getenv(user_name):
        msg = f"[cyan]{name}[/] is set but [cyan]{user_name}[/] is not"
        raise ValueError(msg)
    return val


def _ensure_valid_duration(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default

    try:
        ms = int(val)
    except ValueError as e:
        msg = f"[cyan]{name}[/] is not an integer: {val}"
        raise ValueError(msg) from e

    if ms <= 0:
        msg = f"[cyan]{name}[/] must be positive: {val}"
        raise ValueError(msg)

    return ms


def _ensure_valid_data_dir(name: str) -> Path:
    val = os.getenv(name, ".")
    path = Path(val)

    if path.exists() and not path.is_dir():
        msg = f"[cyan]{name}[/] is not a directory: {val}"
        raise ValueError(msg)

    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"[cyan]{name}[/] cannot be created: {e}"
            raise ValueError(msg) from e

    return path


def get_env_vars() -> EnvConf:
    """Load `.env` and validate all settings, exiting with every problem listed."""
    load_dotenv()

    errs: list[str] = []
    vals: dict[str, object] = {}

    checks = (
        ("mqtt_broker", lambda: _ensure_valid_broker("MQTT_BROKER")),
        ("mqtt_port", lambda: _ensure_valid_port("MQTT_PORT")),
        ("mqtt_username", lambda: os.getenv("MQTT_USERNAME") or None),
        ("mqtt_password", lambda: _ensure_valid_password("MQTT_PASSWORD", "MQTT_USERNAME")),
        ("mqtt_tls", lambda: _ensure_valid_bool("MQTT_TLS", default=False)),
        ("app_port", lambda: _ensure_valid_port("APP_PORT", _DEFAULT_APP_PORT)),
        ("data_dir", lambda: _ensure_valid_data_dir("DATA_DIR")),
        ("pairing_window_ms", lambda: _ensure_valid_duration("PAIRING_WINDOW_MS", _DEFAULT_PAIRING_WINDOW_MS)),
        ("auto_provision", lambda: _ensure_valid_bool("AUTO_PROVISION", default=True)),
        ("session_retention_ms", lambda: _ensure_valid_duration("SESSION_RETENTION_MS", _DEFAULT_RETENTION_MS)),
        ("session_idle_ttl_ms", lambda: _ensure_valid_duration("SESSION_IDLE_TTL_MS", _DEFAULT_IDLE_TTL_MS)),
    )

    for key, check in checks:
        try:
            vals[key] = check()
        except ValueError as e:
            errs.append(str(e))

    if errs:
        cerr.print("".join(f"[bold bright_red]{__prog__}: env-error:[/] {e}\n" for e in errs), end="")
        sys.exit(1)

    return EnvConf(**vals)  # type: ignore[arg-type]
