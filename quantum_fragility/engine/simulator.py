"""Simulation engine: owns the run and drives every sub-component per step."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import numpy as np

from .adapter import SimulationAdapter
from .circuit import Circuit, Gate
from .config import SimulationConfig
from .decoherence import DecoherenceEngine
from .errors import EngineFault, EngineNotReady, FragilityError, InvalidConfiguration
from .events import headline
from .gates import apply_gate
from .image_processor import ImageProcessor
from .metrics import MetricsCalculator, SimulationMetrics
from .noise import NoiseGenerator
from .qubit import create_qubits
from .state import EngineStatus, SimulationState, StepResult

logger = logging.getLogger(__name__)

STEP_DURATION = 1.0          # simulated seconds between two gates
BASE_STEP_DELAY = 0.5        # wall-clock seconds between steps at speed 1.0
PAUSE_POLL_INTERVAL = 0.05


class SimulationEngine(SimulationAdapter):
    """Runs a circuit over a packet, one gate per step.

    Each step applies, in order: the current gate, decoherence for one
    ``step_duration`` of simulated time, and environmental noise; then it
    recomputes metrics and advances the gate index. All randomness comes
    from one NumPy ``Generator`` so a seeded engine replays identically,
    including after :meth:`reset`.

    The engine is single-threaded and not reentrant. ``run()`` and
    ``run_async()`` are the only places where control is handed back
    between steps; ``pause()`` is honoured there, while an explicit
    ``step()`` is always allowed.
    """

    def __init__(self, seed: int | None = None,
                 rng: np.random.Generator | None = None,
                 processor: ImageProcessor | None = None,
                 step_duration: float = STEP_DURATION):
        self._seed = seed
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._processor = processor or ImageProcessor()
        self._decoherence = DecoherenceEngine(self._processor)
        self._noise = NoiseGenerator(self._processor)
        self._step_duration = step_duration

        self._state = SimulationState()
        self._metrics = SimulationMetrics()
        self._paused = False
        self._in_step = False
        self._faulted = False
        self._generation = 0

    # ---- Properties -------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        return self._state.status

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_faulted(self) -> bool:
        return self._faulted

    @property
    def seed(self) -> int | None:
        return self._seed

    @property
    def processor(self) -> ImageProcessor:
        return self._processor

    @property
    def step_delay(self) -> float:
        """Advisory wall-clock pause between automatic steps, in seconds."""
        config = self._state.config
        speed = config.animation_speed if config is not None else 1.0
        return BASE_STEP_DELAY / speed

    # ---- Setup ------------------------------------------------------------

    def initialize(self, config: SimulationConfig) -> SimulationState:
        """Validate ``config`` and start from fresh qubits.

        A loaded packet is kept (restored to its freshly loaded form); the
        circuit is kept only if it still fits the new qubit count.

        Raises:
            InvalidConfiguration: a parameter is out of range.
        """
        self._check_not_stepping()
        if not isinstance(config, SimulationConfig):
            raise InvalidConfiguration(
                f"Expected SimulationConfig, got {type(config).__name__}")
        config.validate()

        circuit = self._state.circuit
        if circuit is not None:
            try:
                circuit.validate(config.qubit_count)
            except FragilityError:
                logger.warning("Dropping circuit that does not fit %d qubits",
                               config.qubit_count)
                circuit = None

        packet = self._state.packet
        self._state = SimulationState(
            status=EngineStatus.INITIALIZED,
            config=config,
            circuit=circuit,
            packet=packet.fresh() if packet is not None else None,
        )
        self._restart()
        logger.info("Engine initialized: %s", config)
        return self.get_state()

    def load_packet(self, image: bytes | str | Path | np.ndarray) -> SimulationState:
        """Decode ``image`` into the packet. Does not start the run.

        Allowed in any state once initialized. The new packet replaces the
        old one and becomes what ``reset()`` restores; remaining gates of an
        unfinished run act on it.

        Raises:
            EngineNotReady: not initialized, or a step is in progress.
            InvalidImageFormat: the image cannot be used.
        """
        self._check_not_stepping()
        if self._state.config is None:
            raise EngineNotReady("initialize() must be called before load_packet()")
        self._state.packet = self._processor.create_packet(image)
        logger.info("Packet loaded: %dx%d", self._state.packet.width,
                    self._state.packet.height)
        return self.get_state()

    def build_circuit(self, gates: list[Gate | dict] | Circuit) -> SimulationState:
        """Validate and install a circuit, replacing any existing one.

        Raises:
            EngineNotReady: not initialized, or a run is under way.
            InvalidCircuit: a gate is malformed or addresses a missing qubit.
        """
        self._check_not_stepping()
        self._require_status(EngineStatus.INITIALIZED, "build_circuit()")
        circuit = gates if isinstance(gates, Circuit) else Circuit.from_gates(list(gates))
        circuit.validate(self._state.config.qubit_count)
        self._state.circuit = circuit
        logger.info("Circuit built with %d gates", circuit.gate_count())
        return self.get_state()

    # ---- Execution --------------------------------------------------------

    def step(self) -> StepResult:
        """Execute the gate at the current index.

        Once every gate has run, returns a terminal result (``event`` is
        ``None``) without touching state.

        Raises:
            EngineNotReady: config, packet or circuit missing; a step is
                already running; or the engine faulted and needs reset.
            EngineFault: internal consistency failure; the run is over.
        """
        self._require_ready()
        self._check_not_stepping()
        state = self._state
        circuit = state.circuit

        if state.current_gate_index >= circuit.gate_count():
            state.is_complete = True
            state.status = EngineStatus.COMPLETED
            return StepResult(state=state.copy(), event=None, metrics=self._metrics)

        self._in_step = True
        try:
            result = self._advance(state, circuit[state.current_gate_index])
        except FragilityError as e:
            if isinstance(e, EngineFault):
                self._fault(e)
            raise
        except Exception as e:
            fault = EngineFault(f"Step {state.current_gate_index} failed: {e}")
            self._fault(fault)
            raise fault from e
        finally:
            self._in_step = False
        return result

    def _advance(self, state: SimulationState, gate: Gate) -> StepResult:
        config = state.config
        t = state.elapsed_time + self._step_duration

        gate_result = apply_gate(
            state.packet, state.qubits, gate, config.gate_error_probability,
            self._rng, self._processor, elapsed_time=t)
        decoherence = self._decoherence.apply(
            gate_result.qubits, gate_result.packet, self._step_duration,
            config.decoherence_rate, elapsed_time=t)
        noise = self._noise.apply(
            decoherence.qubits, decoherence.packet, config.noise_level,
            self._rng, elapsed_time=t)

        fidelities = state.gate_fidelities + [gate_result.fidelity]
        metrics = MetricsCalculator.calculate(noise.qubits, fidelities)
        events = gate_result.events + decoherence.events + noise.events
        visuals = (gate_result.visual_updates + decoherence.visual_updates
                   + noise.visual_updates)

        # Commit only once every stage has succeeded.
        state.qubits = noise.qubits
        state.packet = noise.packet
        state.elapsed_time = t
        state.current_gate_index += 1
        state.gate_fidelities = fidelities
        state.events.extend(events)
        state.is_complete = state.current_gate_index >= state.circuit.gate_count()
        if state.is_complete:
            state.status = EngineStatus.COMPLETED
        elif self._paused:
            state.status = EngineStatus.PAUSED
        else:
            state.status = EngineStatus.RUNNING
        self._metrics = metrics

        logger.debug(
            "Step %d/%d %s: fidelity=%.3f coherence=%.3f degradation=%.3f",
            state.current_gate_index, state.circuit.gate_count(), gate.type.value,
            gate_result.fidelity, metrics.coherence, state.packet.degradation_level)

        return StepResult(
            state=state.copy(),
            event=headline(events),
            metrics=metrics,
            visual_updates=visuals,
        )

    def run(self) -> Iterator[StepResult]:
        """Lazily step through the remaining gates.

        The iterator ends when the circuit completes, when the engine is
        paused (state is kept; ``resume()`` and call ``run()`` again), or
        when the engine is reset or re-initialized underneath it.

        Raises:
            EngineNotReady: config, packet or circuit missing.
        """
        self._require_ready()
        return self._iterate(self._generation)

    def _iterate(self, generation: int) -> Iterator[StepResult]:
        while self._can_continue(generation):
            if self._paused:
                logger.debug("Run paused at gate %d", self._state.current_gate_index)
                return
            yield self.step()

    def run_async(self, delay: float | None = None) -> AsyncIterator[StepResult]:
        """Async variant of :meth:`run` for event-loop driven front ends.

        Sleeps ``delay`` seconds between steps (default :attr:`step_delay`).
        While paused it waits for ``resume()`` instead of ending.

        Raises:
            EngineNotReady: config, packet or circuit missing.
        """
        self._require_ready()
        interval = self.step_delay if delay is None else max(0.0, delay)
        return self._iterate_async(self._generation, interval)

    async def _iterate_async(self, generation: int,
                             interval: float) -> AsyncIterator[StepResult]:
        while self._can_continue(generation):
            if self._paused:
                await asyncio.sleep(PAUSE_POLL_INTERVAL)
                continue
            result = self.step()
            yield result
            if not result.state.is_complete and interval > 0:
                await asyncio.sleep(interval)

    def _can_continue(self, generation: int) -> bool:
        state = self._state
        return (generation == self._generation and not self._faulted
                and state.circuit is not None
                and not state.is_complete
                and state.current_gate_index < state.circuit.gate_count())

    def execute_step(self) -> StepResult:
        return self.step()

    def execute_all(self) -> list[StepResult]:
        return list(self.run())

    # ---- Control ----------------------------------------------------------

    def pause(self) -> None:
        self._paused = True
        if self._state.status == EngineStatus.RUNNING:
            self._state.status = EngineStatus.PAUSED
        logger.debug("Engine paused")

    def resume(self) -> None:
        self._paused = False
        if self._state.status == EngineStatus.PAUSED:
            self._state.status = EngineStatus.RUNNING
        logger.debug("Engine resumed")

    def reset(self) -> SimulationState:
        """Back to the initialized state with the same config and circuit.

        Qubits, metrics, gate index, elapsed time and event log are cleared;
        the packet returns to its freshly loaded form; a seeded random
        source is rewound so the rerun is identical.
        """
        self._check_not_stepping()
        if self._state.config is None:
            logger.debug("Reset ignored: engine not initialized")
            return self.get_state()
        packet = self._state.packet
        self._state = SimulationState(
            status=EngineStatus.INITIALIZED,
            config=self._state.config,
            circuit=self._state.circuit,
            packet=packet.fresh() if packet is not None else None,
        )
        self._restart()
        if self._seed is not None:
            self._rng = np.random.default_rng(self._seed)
        logger.info("Engine reset")
        return self.get_state()

    # ---- Accessors --------------------------------------------------------

    def get_state(self) -> SimulationState:
        return self._state.copy()

    def get_metrics(self) -> SimulationMetrics:
        return self._metrics

    # ---- Internals --------------------------------------------------------

    def _restart(self):
        self._state.qubits = create_qubits(self._state.config.qubit_count)
        self._metrics = MetricsCalculator.calculate(self._state.qubits, [])
        self._paused = False
        self._faulted = False
        self._generation += 1

    def _fault(self, fault: EngineFault):
        self._faulted = True
        logger.error("Engine fault, reset required: %s", fault, exc_info=True)

    def _check_not_stepping(self):
        if self._in_step:
            raise EngineNotReady("A step is already in progress")

    def _require_status(self, status: EngineStatus, operation: str):
        if self._state.config is None:
            raise EngineNotReady(f"initialize() must be called before {operation}")
        if self._state.status != status:
            raise EngineNotReady(
                f"{operation} is not allowed while {self._state.status.value}; "
                "call reset() first")

    def _require_ready(self):
        state = self._state
        if state.config is None:
            raise EngineNotReady("initialize() must be called first")
        if state.packet is None:
            raise EngineNotReady("load_packet() must be called before running")
        if state.circuit is None or state.circuit.gate_count() == 0:
            raise EngineNotReady("build_circuit() must be called before running")
        if self._faulted:
            raise EngineNotReady("Engine faulted; call reset() before running again")
