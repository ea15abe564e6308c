"""TCP server for the simulation bridge.

Runs in a QThread so a hosting Qt application stays responsive. Accepts
connections on localhost and dispatches each request line to
BridgeCommandHandler. The handler's engine must be dedicated to the
bridge: the server thread is its only caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
import selectors
import socket

from PyQt6.QtCore import QObject, QThread, pyqtSignal

from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.errors import FragilityError
from quantum_fragility.engine.simulator import SimulationEngine

from .protocol import DELIMITER, BridgeMessage

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9876
POLL_INTERVAL = 0.2     # seconds between stop-flag checks
CLIENT_TIMEOUT = 30.0


class BridgeCommandHandler:
    """Maps bridge requests onto the adapter operations of one engine.

    Every ``_cmd_*`` method returns a BridgeMessage; engine exceptions become
    error responses carrying the exception class name.
    """

    def __init__(self, engine: SimulationEngine | None = None):
        self._engine = engine or SimulationEngine()

    @property
    def engine(self) -> SimulationEngine:
        return self._engine

    # -- command dispatch --

    def handle(self, msg: BridgeMessage) -> BridgeMessage:
        """Route a request message to the appropriate handler."""
        action = msg.action
        handler = getattr(self, f"_cmd_{action}", None)
        if handler is None:
            return BridgeMessage.error_response(msg.id, f"Unknown action: {action}")
        try:
            return handler(msg)
        except FragilityError as e:
            logger.warning("Bridge command '%s' rejected: %s", action, e)
            return BridgeMessage.from_exception(msg.id, e)
        except Exception as e:
            logger.error("Bridge command '%s' failed: %s", action, e, exc_info=True)
            return BridgeMessage.error_response(msg.id, str(e), "EngineFault")

    @staticmethod
    def _include_image(msg: BridgeMessage) -> bool:
        return bool(msg.params.get("include_image", True))

    def _state_response(self, msg: BridgeMessage, state) -> BridgeMessage:
        return BridgeMessage.ok_response(
            msg.id, {"state": state.to_dict(self._include_image(msg))})

    # -- individual commands --

    def _cmd_ping(self, msg: BridgeMessage) -> BridgeMessage:
        return BridgeMessage.ok_response(msg.id, {"pong": True})

    def _cmd_initialize(self, msg: BridgeMessage) -> BridgeMessage:
        config_dict = msg.params.get("config")
        if not isinstance(config_dict, dict):
            return BridgeMessage.error_response(
                msg.id, "Missing 'config' object", "InvalidConfiguration")
        config = SimulationConfig.from_dict(config_dict)
        return self._state_response(msg, self._engine.initialize(config))

    def _cmd_load_packet(self, msg: BridgeMessage) -> BridgeMessage:
        encoded = msg.params.get("image")
        if not encoded:
            return BridgeMessage.error_response(
                msg.id, "Missing 'image' param", "InvalidImageFormat")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            return BridgeMessage.error_response(
                msg.id, f"Image is not valid base64: {e}", "InvalidImageFormat")
        return self._state_response(msg, self._engine.load_packet(data))

    def _cmd_build_circuit(self, msg: BridgeMessage) -> BridgeMessage:
        gates = msg.params.get("gates")
        if not isinstance(gates, list):
            return BridgeMessage.error_response(
                msg.id, "Missing 'gates' list", "InvalidCircuit")
        return self._state_response(msg, self._engine.build_circuit(gates))

    def _cmd_execute_step(self, msg: BridgeMessage) -> BridgeMessage:
        result = self._engine.execute_step()
        return BridgeMessage.ok_response(
            msg.id, {"result": result.to_dict(self._include_image(msg))})

    def _cmd_execute_all(self, msg: BridgeMessage) -> BridgeMessage:
        include = self._include_image(msg)
        results = self._engine.execute_all()
        return BridgeMessage.ok_response(
            msg.id, {"results": [r.to_dict(include) for r in results]})

    def _cmd_pause(self, msg: BridgeMessage) -> BridgeMessage:
        self._engine.pause()
        return BridgeMessage.ok_response(msg.id, {"status": self._engine.status.value})

    def _cmd_resume(self, msg: BridgeMessage) -> BridgeMessage:
        self._engine.resume()
        return BridgeMessage.ok_response(msg.id, {"status": self._engine.status.value})

    def _cmd_reset(self, msg: BridgeMessage) -> BridgeMessage:
        return self._state_response(msg, self._engine.reset())

    def _cmd_get_state(self, msg: BridgeMessage) -> BridgeMessage:
        return self._state_response(msg, self._engine.get_state())

    def _cmd_get_metrics(self, msg: BridgeMessage) -> BridgeMessage:
        return BridgeMessage.ok_response(
            msg.id, {"metrics": self._engine.get_metrics().to_dict()})


class _Connection:
    """One accepted client socket and the bytes not yet split into lines."""

    def __init__(self, sock: socket.socket, address: tuple):
        self.sock = sock
        self.address = f"{address[0]}:{address[1]}"
        self.pending = b""

    def read_lines(self) -> list[bytes] | None:
        """Complete lines received so far, or None once the peer is gone."""
        try:
            chunk = self.sock.recv(65536)
        except OSError:
            chunk = b""
        if not chunk:
            return None
        *lines, self.pending = (self.pending + chunk).split(DELIMITER)
        return [line for line in lines if line.strip()]


class BridgeWorker(QObject):
    """Selector-driven TCP server living inside a QThread.

    The loop wakes every ``POLL_INTERVAL`` seconds to check the stop flag,
    so ``stop_server()`` takes effect without closing sockets from another
    thread.
    """

    client_connected = pyqtSignal(str)
    client_disconnected = pyqtSignal(str)
    command_received = pyqtSignal(str)  # action name
    status_changed = pyqtSignal(str)    # status text

    def __init__(self, handler: BridgeCommandHandler, port: int = DEFAULT_PORT):
        super().__init__()
        self._handler = handler
        self._port = port
        self._stop_requested = False

    def start_server(self):
        """Bind and serve until stop_server() (called from the thread)."""
        try:
            listener = socket.create_server(("127.0.0.1", self._port))
        except OSError as e:
            self.status_changed.emit(f"Failed: {e}")
            logger.error("Failed to bind bridge server on port %d: %s", self._port, e)
            return
        listener.setblocking(False)

        selector = selectors.DefaultSelector()
        selector.register(listener, selectors.EVENT_READ, data=None)
        self.status_changed.emit(f"Listening on port {self._port}")
        logger.info("Bridge server listening on 127.0.0.1:%d", self._port)

        try:
            while not self._stop_requested:
                for key, _ in selector.select(timeout=POLL_INTERVAL):
                    if key.data is None:
                        self._accept(selector, listener)
                    else:
                        self._service(selector, key.data)
        finally:
            for key in list(selector.get_map().values()):
                selector.unregister(key.fileobj)
                key.fileobj.close()
            selector.close()
            self.status_changed.emit("Stopped")
            logger.info("Bridge server stopped.")

    def stop_server(self):
        """Ask the serve loop to exit at its next wake-up."""
        self._stop_requested = True

    def _accept(self, selector: selectors.BaseSelector, listener: socket.socket):
        try:
            sock, address = listener.accept()
        except BlockingIOError:
            return
        sock.settimeout(CLIENT_TIMEOUT)
        conn = _Connection(sock, address)
        selector.register(sock, selectors.EVENT_READ, data=conn)
        self.client_connected.emit(conn.address)
        self.status_changed.emit(f"Connected: {conn.address}")
        logger.info("Bridge client connected: %s", conn.address)

    def _service(self, selector: selectors.BaseSelector, conn: _Connection):
        lines = conn.read_lines()
        if lines is None:
            selector.unregister(conn.sock)
            conn.sock.close()
            self.client_disconnected.emit(conn.address)
            self.status_changed.emit("Listening")
            logger.info("Bridge client disconnected: %s", conn.address)
            return
        for line in lines:
            response = self._dispatch(line)
            try:
                conn.sock.sendall(response.to_bytes())
            except OSError:
                logger.warning("Failed to send bridge response to %s",
                               conn.address, exc_info=True)

    def _dispatch(self, line: bytes) -> BridgeMessage:
        try:
            msg = BridgeMessage.from_json(line)
        except ValueError as e:
            return BridgeMessage.error_response("", f"Invalid request: {e}")
        self.command_received.emit(msg.action)
        return self._handler.handle(msg)


class BridgeServer:
    """Owns the worker thread; start() and stop() are safe to repeat."""

    def __init__(self, handler: BridgeCommandHandler, port: int = DEFAULT_PORT):
        self._handler = handler
        self._port = port
        self._thread: QThread | None = None
        self._worker: BridgeWorker | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.isRunning()

    @property
    def port(self) -> int:
        return self._port

    @property
    def worker(self) -> BridgeWorker | None:
        return self._worker

    def start(self):
        if self.is_running:
            return
        self._thread = QThread()
        self._worker = BridgeWorker(self._handler, self._port)
        self._worker.moveToThread(self._thread)
        self._thread.started.connect(self._worker.start_server)
        self._thread.start()

    def stop(self, timeout_ms: int = 3000):
        """Stop serving and wait for the thread to finish."""
        if self._worker is not None:
            self._worker.stop_server()
        if self._thread is not None:
            self._thread.quit()
            self._thread.wait(timeout_ms)
        self._thread = None
        self._worker = None
