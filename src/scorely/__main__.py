"""
Engine entry point - MQTT session/pairing engine plus HTTP surface.

Architecture:
    MQTT Broker --> MqttClient (paho thread) --> inbox queue
    inbox queue --> Dispatcher.run() (single worker thread) --> SessionStore
                                                             --> retained snapshots --> MQTT Broker
                                                             --> MatchHistoryStore (on session end)
    HTTP (uvicorn, main thread) --> Dispatcher.create_session() / SessionStore.get()
"""

import contextlib
import logging
import sys
import threading
from typing import Final

import uvicorn

from .admission import AdmissionFilter
from .app import mk_app
from .dispatcher import SUBSCRIPTIONS, Dispatcher
from .misc import get_cli_args, get_env_vars, init_logging
from .mqtt import MqttClient
from .pairing import PairingManager
from .publisher import StatePublisher
from .scheduler import ExpiryScheduler
from .scoring import ScoreStateMachine
from .state import SessionStore
from .storage import MatchHistoryStore

HISTORY_FILE: Final = "matches.json"
WORKER_JOIN_TIMEOUT: Final = 2  # secs


def main() -> None:
    """Application entry point.

    1. Parse CLI args, init logging, validate env
    2. Connect to MQTT (wildcard '+' matches any session id)
    3. Start the dispatcher worker thread
    4. Launch FastAPI via uvicorn (or block until interrupted with --no-api)
    """
    args = get_cli_args()
    init_logging(args.log_level)
    env = get_env_vars()
    log = logging.getLogger("Main")

    store = SessionStore()
    history = MatchHistoryStore(env.data_dir / HISTORY_FILE)
    client = MqttClient(
        broker=env.mqtt_broker,
        port=env.mqtt_port,
        topics=SUBSCRIPTIONS,
        username=env.mqtt_username,
        password=env.mqtt_password,
        tls=env.mqtt_tls,
    )

    publisher = StatePublisher(client)
    scheduler = ExpiryScheduler()
    dispatcher = Dispatcher(
        store=store,
        admission=AdmissionFilter(),
        machine=ScoreStateMachine(store, history),
        pairing=PairingManager(store, publisher, scheduler),
        publisher=publisher,
        pairing_window_ms=env.pairing_window_ms,
        auto_provision=env.auto_provision,
        retention_ms=env.session_retention_ms,
        idle_ttl_ms=env.session_idle_ttl_ms,
    )

    if not client.connect():
        sys.exit(1)

    stop = threading.Event()
    worker = threading.Thread(target=dispatcher.run, args=(client.inbox, stop), name="dispatcher", daemon=True)
    worker.start()

    try:
        with contextlib.suppress(KeyboardInterrupt):
            if args.no_api:
                log.info("HTTP API disabled, running MQTT engine only")
                stop.wait()
            else:
                uvicorn.run(mk_app(dispatcher, history), host=args.host, port=env.app_port, log_config=None)
    finally:
        stop.set()
        scheduler.cancel_all()
        worker.join(timeout=WORKER_JOIN_TIMEOUT)
        client.disconnect()
        log.info("Shutdown complete")


if __name__ == "__main__":
    main()
