"""
connection.py — Guards the single outbound MQTT broker connection.

ConnectionManager   ensure_connected() / publish() / disconnect() over a
                    paho-mqtt client, with state kept under one lock
parse_endpoint()    scheme://[user[:pass]@]host[:port] -> Endpoint

Transport errors arrive on paho's network thread.  The callback only flips
state to DISCONNECTED under the lock; closing the broken client happens on a
separate thread so the lock is never held across blocking I/O and the paho
thread never joins itself.
"""

import enum
import threading
from dataclasses import dataclass
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

import logger


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

class EndpointError(ValueError):
    """The broker URL is malformed or uses an unsupported scheme."""


class ConnectError(Exception):
    """The broker was unreachable or rejected the connection."""


# scheme -> (paho transport, default port, tls)
_SCHEMES = {
    "tcp":   ("tcp",        1883, False),
    "mqtt":  ("tcp",        1883, False),
    "ssl":   ("tcp",        8883, True),
    "tls":   ("tcp",        8883, True),
    "mqtts": ("tcp",        8883, True),
    "ws":    ("websockets",   80, False),
    "wss":   ("websockets",  443, True),
}


@dataclass(frozen=True)
class Endpoint:
    scheme:    str
    transport: str
    host:      str
    port:      int
    username:  str = None
    password:  str = None
    tls:       bool = False

    def __str__(self):
        return f"{self.scheme}://{self.host}:{self.port}"


def parse_endpoint(url: str) -> Endpoint:
    try:
        parts = urlsplit(url)
        port  = parts.port
    except ValueError as e:
        raise EndpointError(f"invalid broker url {url!r}: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise EndpointError(f"unsupported scheme {parts.scheme!r} in {url!r}")
    if not parts.hostname:
        raise EndpointError(f"missing host in {url!r}")

    transport, default_port, tls = _SCHEMES[scheme]
    return Endpoint(
        scheme    = scheme,
        transport = transport,
        host      = parts.hostname,
        port      = port or default_port,
        username  = parts.username,
        password  = parts.password,
        tls       = tls,
    )


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    CONNECTED    = "connected"


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """
    Owns one broker connection and its state machine.

    Parameters
    ----------
    url            : str       broker endpoint, see parse_endpoint()
    client_id      : str       MQTT client identifier
    client_factory : callable  client_factory(endpoint, client_id) -> client;
                               defaults to a paho-mqtt Client
    """

    def __init__(self, url: str, client_id: str = "sysinfo-mqtt", client_factory=None):
        self.endpoint         = parse_endpoint(url)
        self.client_id        = client_id
        self.client_factory   = client_factory or _paho_client
        self.connect_attempts = 0
        self._state           = ConnectionState.DISCONNECTED
        self._lock            = threading.Lock()
        self._client          = self._new_client()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _new_client(self):
        client = self.client_factory(self.endpoint, self.client_id)
        client.on_connect    = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def ensure_connected(self) -> bool:
        """Connect unless already connected.  Never raises; False on failure."""
        logger.debug("Attempt connect")
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.debug("Already connected")
                return True

            if self._client is None:
                self._client = self._new_client()

            self._state = ConnectionState.CONNECTING
            self.connect_attempts += 1
            logger.debug(f"Connecting to {self.endpoint}")
            try:
                self._connect(self._client)
            except ConnectError as e:
                logger.error("Failed to connect", {"endpoint": str(self.endpoint), "error": str(e)})
                self._state = ConnectionState.DISCONNECTED
                return False

            self._state = ConnectionState.CONNECTED
            logger.info("Connected", {"endpoint": str(self.endpoint)})
            return True

    def publish(self, topic: str, payload) -> bool:
        """QoS 0 fire-and-forget publish.  Returns False if it was not queued."""
        client = self._client
        if client is None:
            logger.error("Error publishing: no client", {"topic": topic})
            return False
        try:
            info = client.publish(topic, payload, qos=0)
        except (OSError, ValueError) as e:
            logger.error("Error publishing", {"topic": topic, "error": str(e)})
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Error publishing", {"topic": topic, "error": mqtt.error_string(info.rc)})
            return False
        return True

    def disconnect(self):
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                return
            self._state = ConnectionState.DISCONNECTED
            client = self._client
        # Outside the lock: paho fires on_disconnect from its own thread
        # while loop_stop() joins that thread.
        _close(client)
        logger.info("Disconnected", {"endpoint": str(self.endpoint)})

    def handle_client_error(self, err):
        """Mark the connection lost and close the broken client asynchronously."""
        logger.error("Client error", {"error": str(err)})
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                return
            self._state  = ConnectionState.DISCONNECTED
            client       = self._client
            self._client = None
        threading.Thread(target=_close, args=(client,), daemon=True).start()

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _connect(self, client):
        ep = self.endpoint
        try:
            client.connect(ep.host, ep.port)
            client.loop_start()
        except (OSError, ValueError) as e:
            raise ConnectError(e) from e

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._error_from(client, f"connection refused: {reason_code}")
        else:
            logger.debug("Broker accepted connection")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._error_from(client, f"connection lost: {reason_code}")
        else:
            logger.debug("Client disconnected")

    def _error_from(self, client, err):
        # Callbacks from a client already replaced are stale
        if client is not self._client:
            return
        self.handle_client_error(err)


def _close(client):
    if client is None:
        return
    try:
        client.disconnect()
        client.loop_stop()
    except (OSError, ValueError) as e:
        logger.error("Client disconnect error", {"error": str(e)})
        return
    logger.debug("Client disconnected")


def _paho_client(endpoint: Endpoint, client_id: str):
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        transport=endpoint.transport,
    )
    if endpoint.username:
        client.username_pw_set(endpoint.username, endpoint.password)
    if endpoint.tls:
        client.tls_set()
    return client
