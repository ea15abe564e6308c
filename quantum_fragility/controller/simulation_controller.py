"""Simulation controller driving the engine from the Qt event loop.

The engine is single-threaded, so there is no worker thread: a single-shot
QTimer pulls one result from ``engine.run()`` per tick, which leaves the
event loop free to render and handle input between steps.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import numpy as np
from PyQt6.QtCore import QObject, QTimer, pyqtSignal, pyqtSlot

from quantum_fragility.engine.circuit import Circuit, Gate
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.errors import EngineFault, RecoverableError
from quantum_fragility.engine.simulator import SimulationEngine
from quantum_fragility.engine.state import EngineStatus, StepResult

logger = logging.getLogger(__name__)


class SimulationController(QObject):
    """Owns one engine and routes every command to it.

    Front ends hold a reference to the controller instead of sharing any
    global simulation state. Recoverable engine errors are reported through
    ``error_occurred``; an ``EngineFault`` additionally stops the run loop
    until ``reset()``.
    """

    # Public signals
    simulation_started = pyqtSignal()
    step_completed = pyqtSignal(object)    # StepResult
    run_finished = pyqtSignal(object)      # SimulationState
    status_changed = pyqtSignal(str)       # EngineStatus value
    error_occurred = pyqtSignal(str)

    def __init__(self, engine: SimulationEngine | None = None,
                 parent: QObject | None = None):
        super().__init__(parent)
        self._engine = engine or SimulationEngine()
        self._iterator: Iterator[StepResult] | None = None
        self._step_delay_ms: int | None = None

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._tick)

    @property
    def engine(self) -> SimulationEngine:
        return self._engine

    @property
    def is_running(self) -> bool:
        """Whether the automatic run loop is active."""
        return self._iterator is not None

    def set_step_delay(self, delay_ms: int | None) -> None:
        """Override the engine's animation-paced delay; ``None`` restores it."""
        self._step_delay_ms = None if delay_ms is None else max(0, delay_ms)

    # -- Setup -------------------------------------------------------------

    def configure(self, config: SimulationConfig) -> bool:
        return self._call(self._engine.initialize, config)

    def load_image(self, image: bytes | str | Path | np.ndarray) -> bool:
        return self._call(self._engine.load_packet, image)

    def set_circuit(self, gates: list[Gate | dict] | Circuit) -> bool:
        return self._call(self._engine.build_circuit, gates)

    # -- Commands ----------------------------------------------------------

    def start(self) -> None:
        """Start (or continue) the automatic run loop."""
        if self.is_running:
            self.error_occurred.emit("A simulation is already running")
            return
        self._engine.resume()
        try:
            self._iterator = self._engine.run()
        except RecoverableError as e:
            self.error_occurred.emit(str(e))
            return
        self.simulation_started.emit()
        self.status_changed.emit(self._engine.status.value)
        self._timer.start(0)

    def pause(self) -> None:
        self._engine.pause()
        self._stop_loop()
        self.status_changed.emit(self._engine.status.value)

    def resume(self) -> None:
        if self._engine.status == EngineStatus.COMPLETED:
            return
        self.start()

    def step_once(self) -> StepResult | None:
        """Single explicit step; allowed while paused."""
        try:
            result = self._engine.step()
        except RecoverableError as e:
            self.error_occurred.emit(str(e))
            return None
        except EngineFault as e:
            self._on_fault(e)
            return None
        self.step_completed.emit(result)
        if result.state.is_complete:
            self.run_finished.emit(result.state)
        self.status_changed.emit(self._engine.status.value)
        return result

    def reset(self) -> None:
        self._stop_loop()
        self._call(self._engine.reset)

    # -- Loop --------------------------------------------------------------

    @pyqtSlot()
    def _tick(self) -> None:
        if self._iterator is None:
            return
        try:
            result = next(self._iterator)
        except StopIteration:
            self._finish()
            return
        except RecoverableError as e:
            self._stop_loop()
            self.error_occurred.emit(str(e))
            return
        except EngineFault as e:
            self._on_fault(e)
            return

        self.step_completed.emit(result)
        if result.state.is_complete:
            self._finish()
        else:
            self._timer.start(self._delay_ms())

    def _delay_ms(self) -> int:
        if self._step_delay_ms is not None:
            return self._step_delay_ms
        return int(self._engine.step_delay * 1000)

    def _finish(self) -> None:
        self._stop_loop()
        status = self._engine.status
        self.status_changed.emit(status.value)
        if status == EngineStatus.COMPLETED:
            self.run_finished.emit(self._engine.get_state())

    def _stop_loop(self) -> None:
        self._timer.stop()
        self._iterator = None

    def _on_fault(self, fault: EngineFault) -> None:
        self._stop_loop()
        logger.error("Run stopped by engine fault: %s", fault)
        self.error_occurred.emit(f"Engine fault, reset required: {fault}")

    def _call(self, operation, *args) -> bool:
        try:
            operation(*args)
        except RecoverableError as e:
            logger.warning("%s rejected: %s", operation.__name__, e)
            self.error_occurred.emit(str(e))
            return False
        self.status_changed.emit(self._engine.status.value)
        return True
