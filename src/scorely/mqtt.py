from __future__ import annotations

import logging
import os
import queue
import socket
from typing import TYPE_CHECKING, Any, ClassVar

from paho.mqtt.client import Client, ConnectFlags, DisconnectFlags, MQTTMessage
from paho.mqtt.enums import CallbackAPIVersion, MQTTErrorCode

if TYPE_CHECKING:
    from logging import Logger

    from paho.mqtt.properties import Properties
    from paho.mqtt.reasoncodes import ReasonCode

    type Inbound = tuple[str, bytes]


class MqttClient:
    """Wrapper around paho-mqtt with connection management.

    Inbound messages are not handled on the paho network thread: they are put on
    `inbox` as `(topic, payload)` and drained by the dispatcher worker.
    """

    KEEPALIVE: ClassVar = 30
    SUB_QOS: ClassVar = 1

    broker: str
    port: int
    topics: list[str]
    inbox: queue.Queue[Inbound]

    _log: Logger
    _client: Client

    def __init__(
        self,
        *,
        broker: str,
        port: int,
        topics: list[str],
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        inbox: queue.Queue[Inbound] | None = None,
    ) -> None:
        self.broker = broker
        self.port = port
        self.topics = topics
        self.inbox = inbox if inbox is not None else queue.Queue()

        self._log = logging.getLogger("MqttClient")
        self._client = Client(
            client_id=f"scorely-{socket.gethostname()}-{os.getpid()}",
            callback_api_version=CallbackAPIVersion.VERSION2,
        )
        self._client.on_message = self._on_message
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)

        if username is not None:
            self._client.username_pw_set(username, password)
        if tls:
            self._client.tls_set()

    def connect(self) -> bool:
        """Connect to MQTT broker and start the network loop. Return True on success."""

        self._log.debug("Connecting to MQTT broker [bright_magenta]%s:%d[/]", self.broker, self.port)
        try:
            res1 = self._client.connect(self.broker, self.port, keepalive=MqttClient.KEEPALIVE)
        except OSError as e:
            self._log.critical("MQTT connect failed: %s", e)
            return False

        if res1 != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._log.critical("MQTT connect failed with rc=%s", res1)
            return False

        if (res2 := self._client.loop_start()) != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._log.critical("MQTT connect (loop start) failed with rc=%s", res2)
            return False

        self._log.info("Connected to [bright_magenta]%s:%d[/]", self.broker, self.port)
        return True

    def disconnect(self) -> None:
        """Disconnect from MQTT broker and stop loop."""

        self._log.debug("Disconnecting from MQTT broker [bright_magenta]%s:%d[/]", self.broker, self.port)
        res1 = self._client.disconnect()

        if res1 != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._log.critical("MQTT disconnect failed with rc=%s", res1)
            return

        if (res2 := self._client.loop_stop()) != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._log.critical("MQTT disconnect (loop stop) failed with rc=%s", res2)
            return

        self._log.info("Disconnected from [bright_magenta]%s:%d[/]", self.broker, self.port)

    def publish(self, topic: str, payload: str | bytes, *, qos: int, retain: bool) -> bool:
        """Publish payload to given topic. Return True if queued for delivery.

        While disconnected paho keeps QoS>0 messages queued and flushes them on reconnect.
        """
        res = self._client.publish(topic, payload, qos=qos, retain=retain)

        if res.rc not in (MQTTErrorCode.MQTT_ERR_SUCCESS, MQTTErrorCode.MQTT_ERR_NO_CONN):
            self._log.error("MQTT publish to %s failed with rc=%s", topic, res.rc)
            return False

        return True

    def _sub(self, client: Client, topic: str) -> None:
        """Subscribe to given topic.

        Args:
            client: MQTT client
            topic: MQTT topic
        """

        self._log.debug("Subscribing to topic: [bright_green]%s[/]", topic)
        res, _ = client.subscribe(topic, qos=MqttClient.SUB_QOS)

        if res != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._log.error("MQTT subscribe failed with rc=%s", res)
            return

        self._log.info("Subscribed to topic: [bright_green]%s[/]", topic)

    ############################################### Paho MQTT Callbacks ################################################

    def _on_connect(
        self,
        client: Client,
        userdata: Any,  # noqa: ANN401
        connect_flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        """Subscribe (again) on every successful connect."""

        if reason_code.is_failure:
            self._log.warning("MQTT connect failed with rc=%s", reason_code)
            return

        for topic in self.topics:
            self._sub(client, topic)
        _ = userdata, connect_flags, properties

    def _on_disconnect(
        self,
        client: Client,
        userdata: Any,  # noqa: ANN401
        disconnect_flags: DisconnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        """Handle MQTT disconnection."""

        if reason_code.is_failure:
            self._log.warning("Disconnected unexpectedly (rc=%s), will reconnect...", reason_code)
        else:
            self._log.info("Disconnected (rc=%s)", reason_code)

        _ = client, userdata, disconnect_flags, properties

    def _on_message(self, client: Client, userdata: Any, message: MQTTMessage) -> None:  # noqa: ANN401
        """Hand the raw message to the dispatcher worker."""

        self._log.debug("[bright_white on grey30][MQTT -> Engine][/] %s", message.topic)
        self.inbox.put((message.topic, message.payload))
        _ = client, userdata
