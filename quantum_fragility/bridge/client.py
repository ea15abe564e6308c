"""Client adapter for driving a simulation engine over the bridge.

Usage example::

    from quantum_fragility.bridge.client import RemoteSimulationAdapter
    from quantum_fragility.engine.config import SimulationConfig

    with RemoteSimulationAdapter() as sim:
        sim.initialize(SimulationConfig(qubit_count=3))
        sim.load_packet("photo.png")
        sim.build_circuit([{"type": "hadamard", "targets": [0]}])
        results = sim.execute_all()

Errors reported by the server are raised locally as the same exception
classes the in-process engine uses.
"""

from __future__ import annotations

import base64
import logging
import socket
from pathlib import Path

import numpy as np

from quantum_fragility.engine.adapter import SimulationAdapter
from quantum_fragility.engine.circuit import Circuit, Gate
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.errors import ERROR_TYPES, FragilityError, InvalidImageFormat
from quantum_fragility.engine.image_processor import encode_image
from quantum_fragility.engine.metrics import SimulationMetrics
from quantum_fragility.engine.state import SimulationState, StepResult

from .protocol import DELIMITER, BridgeMessage

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9876


class RemoteSimulationAdapter(SimulationAdapter):
    """Synchronous TCP client implementing the simulation adapter contract.

    Connects to a running bridge server. Can be used as a context manager.
    ``include_image`` controls whether states carry the packet raster;
    without it packets arrive as blank rasters of the right size.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 timeout: float = 30.0, include_image: bool = True):
        self._host = host
        self._port = port
        self._timeout = timeout
        self._include_image = include_image
        self._socket: socket.socket | None = None
        self._buffer = b""

    def connect(self) -> None:
        """Establish TCP connection to the bridge server."""
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.settimeout(self._timeout)
        self._socket.connect((self._host, self._port))
        logger.debug("Connected to bridge at %s:%d", self._host, self._port)

    def close(self) -> None:
        """Close the TCP connection."""
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            self._buffer = b""

    def __enter__(self) -> RemoteSimulationAdapter:
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _send_request(self, action: str, params: dict | None = None) -> dict:
        """Send a request and wait for the response.

        Returns the response data dict on success; raises the engine
        exception named by the server on error.
        """
        if self._socket is None:
            raise ConnectionError("Not connected. Call connect() first.")

        msg = BridgeMessage.request(action, params)
        self._socket.sendall(msg.to_bytes())

        # Read response (newline-delimited)
        while DELIMITER not in self._buffer:
            chunk = self._socket.recv(65536)
            if not chunk:
                raise ConnectionError("Server closed the connection.")
            self._buffer += chunk

        line, self._buffer = self._buffer.split(DELIMITER, 1)
        response = BridgeMessage.from_json(line)

        if response.is_error:
            error_cls = ERROR_TYPES.get(response.error_type, FragilityError)
            raise error_cls(response.error)

        return response.data

    def _state_request(self, action: str, params: dict | None = None) -> SimulationState:
        params = dict(params or {}, include_image=self._include_image)
        return SimulationState.from_dict(self._send_request(action, params)["state"])

    # -- Adapter operations --

    def ping(self) -> bool:
        """Check if the bridge server is responding."""
        data = self._send_request("ping")
        return data.get("pong", False)

    def initialize(self, config: SimulationConfig) -> SimulationState:
        return self._state_request("initialize", {"config": config.to_dict()})

    def load_packet(self, image: bytes | str | Path | np.ndarray) -> SimulationState:
        if isinstance(image, np.ndarray):
            encoded = encode_image(image)
        else:
            if isinstance(image, (str, Path)):
                try:
                    image = Path(image).read_bytes()
                except OSError as e:
                    raise InvalidImageFormat(f"Cannot read image file {image}: {e}") from e
            encoded = base64.b64encode(bytes(image)).decode("ascii")
        return self._state_request("load_packet", {"image": encoded})

    def build_circuit(self, gates: list[Gate | dict] | Circuit) -> SimulationState:
        items = gates.gates if isinstance(gates, Circuit) else gates
        payload = [g.to_dict() if isinstance(g, Gate) else g for g in items]
        return self._state_request("build_circuit", {"gates": payload})

    def execute_step(self) -> StepResult:
        data = self._send_request("execute_step", {"include_image": self._include_image})
        return StepResult.from_dict(data["result"])

    def execute_all(self) -> list[StepResult]:
        data = self._send_request("execute_all", {"include_image": self._include_image})
        return [StepResult.from_dict(r) for r in data["results"]]

    def pause(self) -> None:
        self._send_request("pause")

    def resume(self) -> None:
        self._send_request("resume")

    def reset(self) -> SimulationState:
        return self._state_request("reset")

    def get_state(self) -> SimulationState:
        return self._state_request("get_state")

    def get_metrics(self) -> SimulationMetrics:
        return SimulationMetrics.from_dict(self._send_request("get_metrics")["metrics"])
