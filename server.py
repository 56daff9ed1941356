"""
server.py — Flask + Socket.IO live metrics endpoint.

Every viewer that connects to the /sysmon namespace gets its own push loop:
snapshot the registry, emit it as a "metrics" event, wait ping_period, repeat
until the viewer disconnects or an emit fails.  Loops only read the
registry, so they never contend with each other.

REST
----
GET /api/metrics   current {"ts", "payload"} envelope
GET /api/status    broker state, viewer count, metric count
GET /api/logs      tail of the agent log
"""

import threading
import time

from flask import Flask, jsonify, request
from flask_socketio import SocketIO

import logger


class StreamServer:
    """
    Parameters
    ----------
    registry    : Registry                  snapshot source
    connection  : ConnectionManager | None  reported on /api/status
    ping_period : float                     seconds between pushes per viewer
    async_mode  : str                       Flask-SocketIO async mode
    """

    NAMESPACE = "/sysmon"
    EVENT     = "metrics"

    def __init__(self, registry, connection=None, ping_period: float = 5.0, async_mode: str = "eventlet"):
        self.registry    = registry
        self.connection  = connection
        self.ping_period = float(ping_period)
        self.async_mode  = async_mode
        self._clients    = set()
        self._lock       = threading.Lock()

        self.app      = Flask(__name__)
        self.socketio = SocketIO(self.app, cors_allowed_origins="*", async_mode=async_mode)
        self._register_routes()
        self._register_socket_handlers()

    # ------------------------------------------------------------------
    # Snapshot helpers
    # ------------------------------------------------------------------

    def message(self) -> dict:
        return {"ts": int(time.time()), "payload": self.registry.snapshot()}

    @property
    def viewers(self) -> int:
        with self._lock:
            return len(self._clients)

    def _is_connected(self, sid) -> bool:
        with self._lock:
            return sid in self._clients

    def _forget(self, sid) -> bool:
        with self._lock:
            if sid not in self._clients:
                return False
            self._clients.discard(sid)
            return True

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _register_routes(self):
        app = self.app

        @app.route("/api/metrics")
        def metrics_api():
            """Return the current registry snapshot."""
            return jsonify(self.message())

        @app.route("/api/status")
        def status():
            conn = self.connection
            return jsonify({
                "broker":           str(conn.endpoint) if conn else None,
                "state":            conn.state.value if conn else None,
                "connect_attempts": conn.connect_attempts if conn else 0,
                "viewers":          self.viewers,
                "metrics":          len(self.registry),
            })

        @app.route("/api/logs")
        def get_logs():
            n = request.args.get("n", 300, type=int)
            return jsonify({"entries": logger.read_log(n)})

    # ------------------------------------------------------------------
    # Socket.IO
    # ------------------------------------------------------------------

    def _register_socket_handlers(self):
        socketio = self.socketio

        @socketio.on("connect", namespace=self.NAMESPACE)
        def on_connect(auth=None):
            sid = request.sid
            with self._lock:
                self._clients.add(sid)
            logger.info("Viewer connected", {"sid": sid, "remote": request.remote_addr})
            if self._push(sid):
                socketio.start_background_task(self._stream_loop, sid)

        @socketio.on("disconnect", namespace=self.NAMESPACE)
        def on_disconnect(reason=None):
            if self._forget(request.sid):
                logger.info("Viewer disconnected", {"sid": request.sid})

    def _push(self, sid) -> bool:
        """Emit one snapshot to *sid*; on failure drop and close the viewer."""
        msg = self.message()
        try:
            self.socketio.emit(self.EVENT, msg, to=sid, namespace=self.NAMESPACE)
        except Exception as e:
            logger.error("Write failed", {"sid": sid, "error": str(e)})
            self._close(sid)
            return False
        logger.debug(f"Publishing to {sid} metrics {len(msg['payload'])}")
        return True

    def _stream_loop(self, sid):
        while True:
            # wait for the next tick
            self.socketio.sleep(self.ping_period)
            if not self._is_connected(sid):
                break
            if not self._push(sid):
                break
        logger.debug(f"Stream loop for {sid} finished")

    def _close(self, sid):
        if not self._forget(sid):
            return
        try:
            self.socketio.server.disconnect(sid, namespace=self.NAMESPACE)
        except Exception as e:
            logger.warn("Viewer close failed", {"sid": sid, "error": str(e)})

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def serve(self, host: str = "0.0.0.0", port: int = 9980):
        """Block serving HTTP + Socket.IO until the process is stopped."""
        logger.system(f"Listening for socket.io viewers on {port}", {
            "host":      host,
            "namespace": self.NAMESPACE,
        })
        kwargs = {}
        if self.async_mode == "threading":
            kwargs["allow_unsafe_werkzeug"] = True
        try:
            self.socketio.run(self.app, host=host, port=port, debug=False, **kwargs)
        except OSError as e:
            logger.error(f"Listener failed: {e}")
            raise
