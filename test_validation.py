"""Validation test harness for the fragility engine.

These tests pin down the rules every correct engine must follow: fidelity
and degradation bounds, decoherence monotonicity, measurement and CNOT
invariants, the state machine, and the adapter surfaces built on top
(bridge, controller, persistence).

Run: python test_validation.py      (or: pytest test_validation.py)
"""

from __future__ import annotations

import asyncio
import io
import os
import socket
import sys
import tempfile
import time
import traceback
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import numpy as np
from PIL import Image
from PyQt6.QtCore import QCoreApplication, QEventLoop, QTimer

# ---- Engine imports -------------------------------------------------------
from quantum_fragility.bridge.client import RemoteSimulationAdapter
from quantum_fragility.bridge.protocol import BridgeMessage
from quantum_fragility.bridge.server import BridgeCommandHandler, BridgeServer
from quantum_fragility.controller.simulation_controller import SimulationController
from quantum_fragility.core.config import AppConfig
from quantum_fragility.core.experiment import RunRecord, SeedManager
from quantum_fragility.core.serialization import CircuitSerializer
from quantum_fragility.engine.circuit import Circuit, Gate, GateType
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.decoherence import DecoherenceEngine
from quantum_fragility.engine.errors import (
    EngineFault, EngineNotReady, InvalidCircuit, InvalidConfiguration,
    InvalidImageFormat,
)
from quantum_fragility.engine.events import EventType
from quantum_fragility.engine.gates import GATE_DEFINITIONS, apply_gate, sample_error
from quantum_fragility.engine.image_processor import (
    HISTORY_LIMIT, Corruption, CorruptionType, ImageProcessor, encode_image,
    gradient_image,
)
from quantum_fragility.engine.metrics import MetricsCalculator
from quantum_fragility.engine.noise import NoiseGenerator
from quantum_fragility.engine.qubit import Qubit, create_qubits, link
from quantum_fragility.engine.simulator import SimulationEngine
from quantum_fragility.engine.state import EngineStatus


TOLERANCE = 1e-9
PASS_COUNT = 0
FAIL_COUNT = 0

SCENARIO_CONFIG = SimulationConfig(
    qubit_count=3, noise_level=0.2, decoherence_rate=0.1,
    gate_error_probability=0.1, animation_speed=1.0,
)
SCENARIO_GATES = [
    {"type": "hadamard", "targets": [0]},
    {"type": "cnot", "targets": [0, 1]},
    {"type": "phase", "targets": [1]},
]


def _report(name: str, passed: bool, details: str = ""):
    global PASS_COUNT, FAIL_COUNT
    status = "PASS" if passed else "FAIL"
    if passed:
        PASS_COUNT += 1
    else:
        FAIL_COUNT += 1
    print(f"  [{status}] {name}")
    if details and not passed:
        print(f"         {details}")
    if not passed:
        raise AssertionError(f"{name}: {details}")


def _raises(fn, exc_type) -> tuple[bool, str]:
    """Run ``fn`` and report whether it raised ``exc_type``."""
    try:
        fn()
    except exc_type:
        return True, ""
    except Exception as e:
        return False, f"raised {type(e).__name__}: {e}"
    return False, "nothing raised"


def _ready_engine(seed: int = 7, gates=None, config=SCENARIO_CONFIG,
                  size: int = 50) -> SimulationEngine:
    engine = SimulationEngine(seed=seed)
    engine.initialize(config)
    engine.load_packet(gradient_image(size, size))
    engine.build_circuit(gates if gates is not None else SCENARIO_GATES)
    return engine


def _small_packet(size: int = 8):
    return ImageProcessor().create_packet(gradient_image(size, size))


# Held for the whole session: Qt tests need a live application object
# for timers and event loops.
QT_APP = QCoreApplication.instance() or QCoreApplication([])


# =========================================================================
# Test 1: Three-gate scenario runs to completion
# =========================================================================

def test_three_gate_scenario():
    """H(q0), CNOT(q0,q1), P(q1) on a 50x50 image yields 3 results."""
    print("\nTest 1: Three-Gate Scenario")
    print("-" * 40)

    engine = _ready_engine()
    results = engine.execute_all()

    _report("Exactly 3 step results", len(results) == 3, f"got {len(results)}")
    _report("Final result is complete", results[-1].state.is_complete)
    _report("Earlier results are not complete",
            not any(r.state.is_complete for r in results[:-1]))
    _report("Final coherence < 1.0", results[-1].metrics.coherence < 1.0,
            f"got {results[-1].metrics.coherence}")
    _report("Status is COMPLETED", engine.status == EngineStatus.COMPLETED,
            f"got {engine.status}")

    headlines = [r.event.type for r in results]
    _report("CNOT step headlines entanglement_formed",
            headlines[1] == EventType.ENTANGLEMENT_FORMED, f"got {headlines}")

    terminal = engine.step()
    _report("Step after completion returns a terminal result",
            terminal.event is None and terminal.state.is_complete)


# =========================================================================
# Test 2: State machine ordering
# =========================================================================

def test_state_machine_errors():
    """Out-of-order calls raise EngineNotReady; bad circuits InvalidCircuit."""
    print("\nTest 2: State Machine Ordering")
    print("-" * 40)

    engine = SimulationEngine(seed=1)
    ok, detail = _raises(lambda: engine.load_packet(gradient_image(8, 8)), EngineNotReady)
    _report("load_packet() before initialize() -> EngineNotReady", ok, detail)

    engine.initialize(SCENARIO_CONFIG)
    engine.load_packet(gradient_image(50, 50))
    ok, detail = _raises(engine.step, EngineNotReady)
    _report("step() before build_circuit() -> EngineNotReady", ok, detail)

    ok, detail = _raises(
        lambda: engine.build_circuit([{"type": "cnot", "targets": [0, 5]}]),
        InvalidCircuit)
    _report("CNOT [0, 5] with 3 qubits -> InvalidCircuit", ok, detail)
    _report("Rejected circuit is not installed", engine.get_state().circuit is None)

    ok, detail = _raises(lambda: engine.build_circuit([]), InvalidCircuit)
    _report("Empty circuit -> InvalidCircuit", ok, detail)

    ok, detail = _raises(
        lambda: engine.build_circuit([{"type": "cnot", "targets": [1, 1]}]),
        InvalidCircuit)
    _report("CNOT on a single qubit -> InvalidCircuit", ok, detail)

    ok, detail = _raises(
        lambda: engine.build_circuit([{"type": "hadamard", "targets": [0, 0]}]),
        InvalidCircuit)
    _report("Hadamard listing q0 twice -> InvalidCircuit", ok, detail)
    ok, detail = _raises(
        lambda: engine.build_circuit(
            [{"type": "cnot", "targets": [2], "controls": [2]}]),
        InvalidCircuit)
    _report("CNOT with control == target -> InvalidCircuit", ok, detail)

    for bad in ("high", True, [0.5]):
        ok, detail = _raises(
            lambda: engine.build_circuit(
                [{"type": "h", "targets": [0], "error_probability": bad}]),
            InvalidCircuit)
        _report(f"error_probability={bad!r} -> InvalidCircuit", ok, detail)
    ok, detail = _raises(
        lambda: engine.build_circuit(
            [Gate(GateType.HADAMARD, (0,), error_probability="0.5")]),
        InvalidCircuit)
    _report("Gate object with a string error_probability -> InvalidCircuit", ok, detail)
    numeric = Circuit.from_gates([{"type": "h", "targets": [0], "error_probability": "0.5"}])
    _report("Numeric string error_probability converted to float",
            numeric[0].error_probability == 0.5)

    engine.build_circuit(SCENARIO_GATES)
    engine.step()
    ok, detail = _raises(lambda: engine.build_circuit(SCENARIO_GATES), EngineNotReady)
    _report("build_circuit() mid-run -> EngineNotReady", ok, detail)

    engine.reset()
    engine.build_circuit(SCENARIO_GATES[:1])
    _report("build_circuit() allowed again after reset()",
            engine.get_state().circuit.gate_count() == 1)

    ok, detail = _raises(lambda: engine.initialize(SimulationConfig(qubit_count=2)),
                         InvalidConfiguration)
    _report("initialize() with 2 qubits -> InvalidConfiguration", ok, detail)

    # A new upload replaces the packet in any initialized state.
    swap = _ready_engine(seed=3, size=20)
    swap.step()
    swap.pause()
    swap.load_packet(gradient_image(12, 12))
    state = swap.get_state()
    _report("load_packet() while paused replaces the packet",
            state.packet.width == 12 and state.packet.degradation_level == 0.0
            and state.current_gate_index == 1)
    swap.resume()
    swap.execute_all()
    _report("Run finishes on the new packet", swap.status == EngineStatus.COMPLETED
            and swap.get_state().packet.width == 12)
    swap.load_packet(gradient_image(30, 10))
    state = swap.get_state()
    _report("load_packet() after completion replaces the packet",
            (state.packet.width, state.packet.height) == (30, 10)
            and state.packet.history == [])
    restored = swap.reset().packet
    _report("reset() restores the latest upload",
            (restored.width, restored.height) == (30, 10)
            and restored.degradation_level == 0.0)

    wide = SimulationEngine(seed=1)
    wide.initialize(SimulationConfig(qubit_count=4))
    wide.build_circuit([{"type": "cnot", "targets": [0, 3]}])
    wide.initialize(SimulationConfig(qubit_count=3))
    _report("Re-initialize drops a circuit that no longer fits",
            wide.get_state().circuit is None)


# =========================================================================
# Test 3: Reset restores the initialized state
# =========================================================================

def test_reset_after_two_steps():
    """reset() clears progress but keeps configuration and circuit."""
    print("\nTest 3: Reset After Two Steps")
    print("-" * 40)

    engine = _ready_engine(seed=11)
    gate_ids = [g.id for g in engine.get_state().circuit.gates]
    engine.step()
    engine.step()
    state = engine.reset()

    _report("current_gate_index back to 0", state.current_gate_index == 0,
            f"got {state.current_gate_index}")
    _report("events cleared", state.events == [], f"{len(state.events)} left")
    _report("config intact", state.config == SCENARIO_CONFIG)
    _report("circuit intact", [g.id for g in state.circuit.gates] == gate_ids)
    _report("packet restored", state.packet.degradation_level == 0.0
            and state.packet.history == [])
    _report("qubits fresh", all(q.coherence == 1.0 and q.superposition_level == 0.0
                                and not q.entanglements for q in state.qubits))
    _report("status INITIALIZED", state.status == EngineStatus.INITIALIZED)

    # A seeded engine replays identically after reset.
    first = [r.state.packet.degradation_level for r in engine.execute_all()]
    engine.reset()
    second = [r.state.packet.degradation_level for r in engine.execute_all()]
    _report("Seeded rerun after reset is identical", first == second,
            f"{first} vs {second}")


# =========================================================================
# Test 4: Fidelity bounds and degradation monotonicity
# =========================================================================

def test_fidelity_and_degradation():
    """Fidelity stays in [1 - ceiling, 1]; degradation never decreases."""
    print("\nTest 4: Fidelity and Degradation")
    print("-" * 40)

    rng = np.random.default_rng(5)
    processor = ImageProcessor()
    packet = _small_packet()
    qubits = create_qubits(3)
    sequence = [
        Gate(GateType.HADAMARD, (0,)), Gate(GateType.CNOT, (0, 1)),
        Gate(GateType.PHASE, (1,)), Gate(GateType.IDENTITY, (2,)),
        Gate(GateType.HADAMARD, (2,)), Gate(GateType.CNOT, (1, 2)),
    ]

    bounded = True
    monotonic = True
    strict = True
    for gate in sequence:
        result = apply_gate(packet, qubits, gate, 1.0, rng, processor)
        ceiling = GATE_DEFINITIONS[gate.type].error_ceiling
        if not (1.0 - ceiling - TOLERANCE <= result.fidelity <= 1.0):
            bounded = False
        if result.packet.degradation_level < packet.degradation_level:
            monotonic = False
        if result.actual_error > 0 and not (
                result.packet.degradation_level > packet.degradation_level):
            strict = False
        packet, qubits = result.packet, result.qubits

    _report("Fidelity within [1 - ceiling, 1]", bounded)
    _report("Degradation non-decreasing", monotonic)
    _report("Degradation strictly rises on a nonzero error", strict)
    _report("Degradation > 0 after erroneous gates", packet.degradation_level > 0.0,
            f"got {packet.degradation_level}")

    perfect = apply_gate(_small_packet(), create_qubits(3),
                         Gate(GateType.HADAMARD, (0,)), 0.0, rng, processor)
    _report("Zero error probability -> fidelity 1.0", perfect.fidelity == 1.0)
    _report("Zero error leaves degradation at 0",
            perfect.packet.degradation_level == 0.0)

    clean = _small_packet()
    idle = apply_gate(clean, create_qubits(3), Gate(GateType.IDENTITY, (1,)), 0.0,
                      rng, processor)
    _report("Error-free identity applies no fade",
            idle.corruption is None and idle.packet.history == []
            and np.array_equal(idle.packet.image, clean.image))
    noisy = apply_gate(clean, create_qubits(3), Gate(GateType.IDENTITY, (1,)), 1.0,
                       rng, processor)
    _report("Erroneous identity fades by error x 0.05",
            noisy.actual_error > 0.0 and noisy.corruption is not None
            and noisy.corruption.type == CorruptionType.FADE
            and abs(noisy.corruption.intensity - noisy.actual_error * 0.05) < TOLERANCE
            and abs(noisy.packet.degradation_level - noisy.actual_error * 0.05) < TOLERANCE,
            f"error={noisy.actual_error}, corruption={noisy.corruption}")

    ceilings = [GATE_DEFINITIONS[t].error_ceiling for t in
                (GateType.IDENTITY, GateType.PHASE, GateType.HADAMARD, GateType.CNOT)]
    _report("Error ceilings ordered Identity < Phase < Hadamard < CNOT",
            ceilings == sorted(ceilings) and len(set(ceilings)) == 4, f"{ceilings}")

    engine = _ready_engine(seed=3, config=SimulationConfig(
        qubit_count=3, noise_level=0.5, decoherence_rate=0.3,
        gate_error_probability=0.8))
    levels = [r.state.packet.degradation_level for r in engine.execute_all()]
    _report("Engine run degradation non-decreasing",
            all(b >= a for a, b in zip(levels, levels[1:])), f"{levels}")


# =========================================================================
# Test 5: CNOT degrades more than Hadamard in expectation
# =========================================================================

def test_cnot_expected_degradation():
    """Mean degradation from CNOT >= mean from Hadamard at equal p."""
    print("\nTest 5: CNOT vs Hadamard Expected Degradation")
    print("-" * 40)

    cnot = GATE_DEFINITIONS[GateType.CNOT]
    had = GATE_DEFINITIONS[GateType.HADAMARD]
    for seed in (1, 2, 3):
        for p in (0.1, 0.5, 1.0):
            rng = np.random.default_rng(seed)
            c = np.mean([sample_error(cnot, p, rng) * cnot.corruption_weight
                         for _ in range(2000)])
            h = np.mean([sample_error(had, p, rng) * had.corruption_weight
                         for _ in range(2000)])
            _report(f"seed={seed} p={p}: CNOT {c:.4f} >= Hadamard {h:.4f}", c >= h)

    rng = np.random.default_rng(9)
    processor = ImageProcessor()
    packet = _small_packet()
    qubits = create_qubits(3)
    cnot_mean = np.mean([
        apply_gate(packet, qubits, Gate(GateType.CNOT, (0, 1)), 1.0, rng,
                   processor).packet.degradation_level
        for _ in range(200)])
    had_mean = np.mean([
        apply_gate(packet, qubits, Gate(GateType.HADAMARD, (0,)), 1.0, rng,
                   processor).packet.degradation_level
        for _ in range(200)])
    _report("Full gate application: CNOT degrades more", cnot_mean >= had_mean,
            f"CNOT {cnot_mean:.4f}, Hadamard {had_mean:.4f}")


# =========================================================================
# Test 6: Decoherence never raises coherence
# =========================================================================

def test_decoherence_monotonic():
    """Coherence only falls; zero stays zero; a fully decohered set is a no-op."""
    print("\nTest 6: Decoherence Monotonicity")
    print("-" * 40)

    engine = DecoherenceEngine()
    qubits = [Qubit("q0", 0.5, 1.0), Qubit("q1", 1.0, 0.3), Qubit("q2", 0.0, 0.0)]
    link(qubits[0], qubits[1], 0.3)  # weak enough to break before coherence runs out
    packet = _small_packet()

    never_rises = True
    zero_stays = True
    for _ in range(30):
        result = engine.apply(qubits, packet, 1.0, 0.2)
        for before, after in zip(qubits, result.qubits):
            if after.coherence > before.coherence:
                never_rises = False
            if before.coherence == 0.0 and after.coherence != 0.0:
                zero_stays = False
        qubits, packet = result.qubits, result.packet

    _report("coherence_after <= coherence_before", never_rises)
    _report("Zero coherence never becomes positive", zero_stays)
    _report("All qubits decohered after long exposure",
            all(q.coherence == 0.0 for q in qubits))
    _report("Weak link broken from both sides",
            not qubits[0].entanglements and not qubits[1].entanglements)

    degradation = packet.degradation_level
    history = len(packet.history)
    idle = engine.apply(qubits, packet, 1.0, 0.2)
    _report("Fully decohered set: no events", idle.events == [])
    _report("Fully decohered set: packet untouched",
            idle.packet.degradation_level == degradation
            and len(idle.packet.history) == history)

    pair = [Qubit("q0", 0.5, 1.0), Qubit("q1", 0.5, 1.0)]
    link(pair[0], pair[1], 0.8, decay_rate=0.3)
    decayed = engine.apply(pair, _small_packet(), 1.0, 0.2)
    expected = 0.8 - decayed.coherence_loss * 0.3
    a, b = decayed.qubits
    _report("Surviving link decays by loss x decay_rate",
            abs(decayed.coherence_loss - 0.1) < TOLERANCE
            and abs(a.entanglements["q1"].strength - expected) < TOLERANCE,
            f"strength={a.entanglements['q1'].strength}, expected={expected}")
    _report("Decayed strength equal on both partners",
            a.entanglements["q1"].strength == b.entanglements["q0"].strength)
    _report("Input link left untouched",
            pair[0].entanglements["q1"].strength == 0.8)

    crossing = engine.apply([Qubit("q0", 0.0, 0.55)], _small_packet(), 1.0, 0.2)
    types = [e.type for e in crossing.events]
    _report("Crossing 0.5 emits coherence_threshold_crossed",
            EventType.COHERENCE_THRESHOLD_CROSSED in types, f"{types}")


# =========================================================================
# Test 7: Measurement idempotence and CNOT symmetry
# =========================================================================

def test_measurement_and_cnot_invariants():
    """Measuring twice changes nothing; CNOT links are always symmetric."""
    print("\nTest 7: Measurement and CNOT Invariants")
    print("-" * 40)

    rng = np.random.default_rng(2)
    processor = ImageProcessor()
    packet = _small_packet()
    qubits = create_qubits(3)
    for gate in (Gate(GateType.HADAMARD, (0,)), Gate(GateType.CNOT, (0, 1))):
        result = apply_gate(packet, qubits, gate, 0.0, rng, processor)
        packet, qubits = result.packet, result.qubits

    measure = Gate(GateType.MEASURE, (0,))
    first = apply_gate(packet, qubits, measure, 0.0, rng, processor)
    q0 = first.qubits[0]
    _report("Measured qubit fully collapsed", q0.is_collapsed)
    _report("Partner no longer linked", "q0" not in first.qubits[1].entanglements)
    first_types = [e.type for e in first.events]
    _report("First measurement collapses superposition",
            EventType.SUPERPOSITION_COLLAPSED in first_types)
    _report("First measurement breaks the link",
            EventType.ENTANGLEMENT_BROKEN in first_types)

    second = apply_gate(first.packet, first.qubits, measure, 0.0, rng, processor)
    _report("Second measurement leaves qubit unchanged",
            second.qubits[0].to_dict() == q0.to_dict())
    second_types = [e.type for e in second.events]
    _report("Second measurement: no collapse or break events",
            EventType.SUPERPOSITION_COLLAPSED not in second_types
            and EventType.ENTANGLEMENT_BROKEN not in second_types, f"{second_types}")
    _report("Measurement adds no degradation",
            second.packet.degradation_level == first.packet.degradation_level)

    symmetric = True
    for i in range(4):
        for j in range(4):
            if i == j:
                continue
            for gate in (Gate(GateType.CNOT, (i, j)),
                         Gate(GateType.CNOT, (j,), control_qubits=(i,))):
                r = apply_gate(_small_packet(4), create_qubits(4), gate, 0.3, rng,
                               processor)
                a, b = r.qubits[i], r.qubits[j]
                if (b.id in a.entanglements) != (a.id in b.entanglements):
                    symmetric = False
                elif a.entanglements[b.id].strength != b.entanglements[a.id].strength:
                    symmetric = False
    _report("CNOT(i, j) symmetric for every pair", symmetric)

    ok, detail = _raises(
        lambda: apply_gate(_small_packet(), create_qubits(3),
                           Gate(GateType.HADAMARD, (5,)), 0.0, rng, processor),
        EngineFault)
    _report("Gate on a missing qubit -> EngineFault", ok, detail)


# =========================================================================
# Test 8: Noise scales with intensity
# =========================================================================

def test_noise_scaling():
    """More intense noise disturbs more; zero intensity does nothing."""
    print("\nTest 8: Noise Scaling")
    print("-" * 40)

    generator = NoiseGenerator()
    packet = _small_packet()

    def mean_loss(intensity: float) -> float:
        rng = np.random.default_rng(21)
        total = 0.0
        for _ in range(400):
            result = generator.apply(create_qubits(3), packet, intensity, rng)
            total += sum(result.disturbances.values())
        return total / 400

    low, high = mean_loss(0.2), mean_loss(1.0)
    _report("Mean disturbance grows with intensity", high > low,
            f"low={low:.5f}, high={high:.5f}")

    tracks_degradation = True

    def packet_hits(intensity: float, trials: int = 2000) -> tuple[int, float]:
        nonlocal tracks_degradation
        rng = np.random.default_rng(33)
        hits, strength = 0, 0.0
        for _ in range(trials):
            result = generator.apply(create_qubits(3), packet, intensity, rng)
            if result.corruption is not None:
                hits += 1
                strength += result.corruption.intensity
                if abs(result.packet.degradation_level
                       - packet.degradation_level - result.corruption.intensity) > TOLERANCE:
                    tracks_degradation = False
        return hits, strength / max(hits, 1)

    low_hits, low_size = packet_hits(0.2)
    high_hits, high_size = packet_hits(1.0)
    _report("Packet corruption more frequent at higher intensity",
            high_hits > low_hits > 0, f"low={low_hits}, high={high_hits}")
    _report("Packet corruption stronger at higher intensity",
            high_size > low_size, f"low={low_size:.5f}, high={high_size:.5f}")
    _report("Packet corruption capped at intensity x 0.1",
            high_size <= 0.1 and low_size <= 0.02)
    _report("Noise degradation equals the corruption intensity", tracks_degradation)

    quiet = generator.apply(create_qubits(3), packet, 0.0, np.random.default_rng(0))
    _report("Zero intensity: no events", quiet.events == [])
    _report("Zero intensity: no particles", quiet.particles == [])
    _report("Zero intensity: packet unchanged",
            np.array_equal(quiet.packet.image, packet.image))
    _report("Particle count scales with intensity",
            generator.particle_count(0.25) < generator.particle_count(1.0))


# =========================================================================
# Test 9: Metrics formulas
# =========================================================================

def test_metrics():
    """Coherence mean, entanglement density and trailing fidelity."""
    print("\nTest 9: Metrics Formulas")
    print("-" * 40)

    qubits = [Qubit("q0", coherence=1.0), Qubit("q1", coherence=0.5),
              Qubit("q2", coherence=0.0)]
    link(qubits[0], qubits[1], 0.8)

    _report("Coherence is the mean",
            abs(MetricsCalculator.coherence(qubits) - 0.5) < TOLERANCE)
    expected = (1 / 3) * 0.8
    got = MetricsCalculator.entanglement(qubits)
    _report("Entanglement = link density * mean strength",
            abs(got - expected) < TOLERANCE, f"expected {expected}, got {got}")
    _report("No qubits: coherence 0, entanglement 0",
            MetricsCalculator.coherence([]) == 0.0
            and MetricsCalculator.entanglement([]) == 0.0)

    fidelities = [0.0, 0.0] + [0.9] * 10
    _report("Fidelity averages the last 10 gates",
            abs(MetricsCalculator.gate_fidelity(fidelities) - 0.9) < TOLERANCE)
    _report("No gates yet: fidelity 1.0", MetricsCalculator.gate_fidelity([]) == 1.0)


# =========================================================================
# Test 10: Image processor
# =========================================================================

def _encoded(image: np.ndarray, fmt: str) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(image[..., :3]).save(buf, format=fmt)
    return buf.getvalue()


def test_image_processor():
    """Decoding bounds and side-effect-free corruption effects."""
    print("\nTest 10: Image Processor")
    print("-" * 40)

    processor = ImageProcessor()
    image = gradient_image(32, 32)

    packet = processor.create_packet(_encoded(image, "PNG"))
    _report("PNG bytes decode to a 32x32 packet",
            (packet.width, packet.height, packet.format) == (32, 32, "PNG"))

    for label, upload, proc in (
        ("garbage bytes", b"not an image", processor),
        ("empty upload", b"", processor),
        ("unsupported BMP", _encoded(image, "BMP"), processor),
        ("byte limit", _encoded(image, "PNG"), ImageProcessor(max_bytes=64)),
        ("dimension limit", image, ImageProcessor(max_dimension=16)),
        ("wrong array shape", np.zeros((4, 4), dtype=np.uint8), processor),
    ):
        ok, detail = _raises(lambda: proc.create_packet(upload), InvalidImageFormat)
        _report(f"Rejects {label}", ok, detail)

    ok, detail = _raises(lambda: processor.create_packet("/nonexistent/file.png"),
                         InvalidImageFormat)
    _report("Missing file -> InvalidImageFormat", ok, detail)

    original = image.copy()
    rng = np.random.default_rng(4)
    for kind in CorruptionType:
        out = processor.apply_corruption(image, Corruption(kind, 0.7), rng)
        _report(f"{kind.value}: input untouched, shape kept",
                np.array_equal(image, original) and out.shape == image.shape)

    faded = processor.apply_corruption(image, Corruption(CorruptionType.FADE, 0.5))
    _report("Fade lowers alpha", int(faded[..., 3].max()) < 255)
    same = processor.apply_corruption(image, Corruption(CorruptionType.BLUR, 0.0))
    _report("Zero intensity returns an equal copy", np.array_equal(same, image))
    ok, detail = _raises(
        lambda: processor.apply_corruption(image, Corruption("bogus", 0.5)), ValueError)
    _report("Unknown corruption type -> ValueError", ok, detail)

    p = processor.create_packet(gradient_image(8, 8))
    for _ in range(HISTORY_LIMIT + 10):
        p = processor.corrupt_packet(p, Corruption(CorruptionType.FADE, 0.01),
                                     source="test", degradation=0.001)
    _report(f"History capped at {HISTORY_LIMIT}", len(p.history) == HISTORY_LIMIT)
    _report("fresh() restores the loaded image",
            np.array_equal(p.fresh().image, gradient_image(8, 8)))


# =========================================================================
# Test 11: Configuration
# =========================================================================

def test_configuration():
    """SimulationConfig validation/clamping and AppConfig persistence."""
    print("\nTest 11: Configuration")
    print("-" * 40)

    ok, detail = _raises(
        SimulationConfig(qubit_count=9, noise_level=1.5, animation_speed=0).validate,
        InvalidConfiguration)
    _report("Out-of-range fields -> InvalidConfiguration", ok, detail)
    try:
        SimulationConfig(qubit_count=9, noise_level=1.5).validate()
    except InvalidConfiguration as e:
        _report("Message names every bad field",
                "qubit_count" in str(e) and "noise_level" in str(e), str(e))

    clamped = SimulationConfig(qubit_count=12, noise_level=-0.5,
                               animation_speed=50.0).clamped()
    _report("clamped() produces a valid config", clamped.validate() is clamped)
    _report("clamped() pulls to the bounds",
            (clamped.qubit_count, clamped.noise_level, clamped.animation_speed)
            == (8, 0.0, 10.0), f"{clamped}")

    ok, detail = _raises(lambda: SimulationConfig.from_dict({"qubits": 3}),
                         InvalidConfiguration)
    _report("Unknown config key rejected", ok, detail)
    _report("Config dict round trip",
            SimulationConfig.from_dict(SCENARIO_CONFIG.to_dict()) == SCENARIO_CONFIG)

    with tempfile.TemporaryDirectory() as tmp:
        cfg = AppConfig.load(tmp)
        _report("Defaults when no file exists", cfg.default_qubits == 3)
        cfg.default_qubits = 20
        cfg.add_recent_image("a.png")
        cfg.save()
        loaded = AppConfig.load(tmp)
        _report("Saved values reload", loaded.default_qubits == 20
                and loaded.recent_images == ["a.png"])
        _report("simulation_config() clamps qubit count",
                loaded.simulation_config().qubit_count == 8)
        (Path(tmp) / "config.json").write_text("{broken", encoding="utf-8")
        _report("Unreadable file falls back to defaults",
                AppConfig.load(tmp).default_qubits == 3)

        (Path(tmp) / "config.json").write_text(
            '{"default_qubits": "5", "noise_level": "high", "bridge_port": 9000.0,'
            ' "animation_speed": "2.5", "decoherence_rate": null,'
            ' "recent_images": "a.png", "max_image_bytes": true,'
            ' "config_path": "elsewhere"}',
            encoding="utf-8")
        edited = AppConfig.load(tmp)
        _report("Numeric strings coerced to the field type",
                edited.default_qubits == 5 and isinstance(edited.default_qubits, int)
                and edited.animation_speed == 2.5
                and edited.bridge_port == 9000 and isinstance(edited.bridge_port, int),
                f"{edited}")
        _report("Values of the wrong type keep their defaults",
                edited.noise_level == 0.2 and edited.decoherence_rate == 0.1
                and edited.recent_images == []
                and edited.max_image_bytes == AppConfig().max_image_bytes,
                f"{edited}")
        _report("Hand-edited config still yields a simulation config",
                edited.simulation_config().qubit_count == 5)
        (Path(tmp) / "config.json").write_text("[1, 2]", encoding="utf-8")
        _report("Non-object file falls back to defaults",
                AppConfig.load(tmp).default_qubits == 3)


# =========================================================================
# Test 12: Pause, resume and async runs
# =========================================================================

def test_pause_resume_and_async():
    """run() stops on pause; step() still works; run_async() waits."""
    print("\nTest 12: Pause, Resume and Async Runs")
    print("-" * 40)

    engine = _ready_engine(seed=8)
    run = engine.run()
    next(run)
    engine.pause()
    _report("Paused run() yields nothing more", list(run) == [])
    _report("Status PAUSED", engine.status == EngineStatus.PAUSED)

    result = engine.step()
    _report("Explicit step allowed while paused",
            result.state.current_gate_index == 2
            and engine.status == EngineStatus.PAUSED)

    engine.resume()
    rest = list(engine.run())
    _report("Resumed run finishes the circuit",
            len(rest) == 1 and engine.status == EngineStatus.COMPLETED)

    stale = _ready_engine(seed=8)
    run = stale.run()
    next(run)
    stale.reset()
    _report("Iterator from before reset() stops", list(run) == [])

    async def collect(eng: SimulationEngine, resume_after: float | None = None):
        if resume_after is not None:
            asyncio.get_running_loop().call_later(resume_after, eng.resume)
        return [r async for r in eng.run_async(delay=0)]

    results = asyncio.run(collect(_ready_engine(seed=8)))
    _report("run_async() yields 3 results", len(results) == 3)

    waiting = _ready_engine(seed=8)
    waiting.pause()
    results = asyncio.run(collect(waiting, resume_after=0.1))
    _report("run_async() waits through a pause", len(results) == 3
            and results[-1].state.is_complete)


# =========================================================================
# Test 13: Engine faults
# =========================================================================

def test_engine_fault():
    """A consistency failure stops the run until reset()."""
    print("\nTest 13: Engine Fault")
    print("-" * 40)

    engine = _ready_engine(seed=5, gates=[
        {"type": "hadamard", "targets": [0]},
        {"type": "cnot", "targets": [1, 2]},
    ])
    engine.step()
    # Simulate lost bookkeeping: the CNOT now addresses a missing qubit.
    engine._state.qubits.pop()

    ok, detail = _raises(engine.step, EngineFault)
    _report("Step against missing qubit -> EngineFault", ok, detail)
    _report("Engine marked faulted", engine.is_faulted)
    _report("State not advanced", engine.get_state().current_gate_index == 1)
    ok, detail = _raises(engine.step, EngineNotReady)
    _report("Further steps refused until reset", ok, detail)

    engine.reset()
    _report("reset() clears the fault",
            not engine.is_faulted and len(engine.execute_all()) == 2)

    # A stage that calls back into the engine mid-step must be refused.
    processor = _ReentrantProcessor()
    nested = SimulationEngine(seed=5, processor=processor)
    nested.initialize(SCENARIO_CONFIG)
    nested.load_packet(gradient_image(10, 10))
    nested.build_circuit(SCENARIO_GATES)
    processor.engine = nested
    ok, detail = _raises(nested.step, EngineNotReady)
    _report("Nested step() during a step -> EngineNotReady", ok, detail)
    _report("Refused nested step does not fault or advance",
            not nested.is_faulted and nested.get_state().current_gate_index == 0)
    processor.engine = None
    nested.step()
    _report("Engine steps normally afterwards",
            nested.get_state().current_gate_index == 1)


class _ReentrantProcessor(ImageProcessor):
    """Image processor that tries to step its engine while corrupting."""

    engine: SimulationEngine | None = None

    def corrupt_packet(self, *args, **kwargs):
        if self.engine is not None:
            self.engine.step()
        return super().corrupt_packet(*args, **kwargs)


# =========================================================================
# Test 14: Persistence
# =========================================================================

def test_persistence():
    """Circuit files, compact gate specs and run records."""
    print("\nTest 14: Persistence")
    print("-" * 40)

    circuit = CircuitSerializer.parse_spec("H:0, CNOT:0-1, P:1, M:0")
    _report("parse_spec reads 4 gates",
            [g.type for g in circuit.gates] == [GateType.HADAMARD, GateType.CNOT,
                                                GateType.PHASE, GateType.MEASURE])
    _report("CNOT control is the first index", circuit[1].cnot_pair() == (0, 1))
    ok, detail = _raises(lambda: CircuitSerializer.parse_spec("H"), InvalidCircuit)
    _report("Gate without qubits rejected", ok, detail)
    ok, detail = _raises(lambda: CircuitSerializer.parse_spec("X:0"), InvalidCircuit)
    _report("Unknown gate type rejected", ok, detail)

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "circuit.qfrag"
        CircuitSerializer.save(circuit, path)
        loaded = CircuitSerializer.load(path)
        _report("Circuit file round trip", loaded.to_dict() == circuit.to_dict())

        bad = Path(tmp) / "bad.qfrag"
        bad.write_text("[1, 2", encoding="utf-8")
        ok, detail = _raises(lambda: CircuitSerializer.load(bad), InvalidCircuit)
        _report("Malformed circuit file -> InvalidCircuit", ok, detail)

        engine = _ready_engine(seed=12)
        results = engine.execute_all()
        record = RunRecord.from_results(SCENARIO_CONFIG, engine.get_state().circuit,
                                        results, seed=12, metadata={"note": "test"})
        record_path = Path(tmp) / "runs" / "run.json"
        record.save(record_path)
        again = RunRecord.load(record_path)
        _report("Run record keeps one entry per step", len(again.steps) == 3)
        _report("Run record restores config",
                again.simulation_config() == SCENARIO_CONFIG)
        _report("Run record restores circuit",
                again.rebuild_circuit().gate_count() == 3)
        _report("Final degradation recorded",
                again.final_degradation == results[-1].state.packet.degradation_level)

    seeds = SeedManager(42)
    a = [seeds.child_seed() for _ in range(3)]
    seeds.reset()
    _report("SeedManager replays after reset", a == [seeds.child_seed() for _ in range(3)])


# =========================================================================
# Test 15: Bridge command handler
# =========================================================================

def _request(handler: BridgeCommandHandler, action: str, **params) -> BridgeMessage:
    msg = BridgeMessage(type="request", id=action, action=action, params=params)
    wire = BridgeMessage.from_json(msg.to_json())
    response = handler.handle(wire)
    return BridgeMessage.from_json(response.to_json())


def test_bridge_handler():
    """Adapter operations and typed errors through the bridge protocol."""
    print("\nTest 15: Bridge Command Handler")
    print("-" * 40)

    handler = BridgeCommandHandler(SimulationEngine(seed=6))
    _report("ping", _request(handler, "ping").data.get("pong") is True)

    resp = _request(handler, "initialize", config={"qubit_count": 1})
    _report("Bad config -> InvalidConfiguration",
            resp.status == "error" and resp.error_type == "InvalidConfiguration",
            resp.error)

    resp = _request(handler, "initialize", config=SCENARIO_CONFIG.to_dict())
    _report("initialize ok", resp.status == "ok"
            and resp.data["state"]["status"] == "initialized")

    resp = _request(handler, "load_packet", image="***")
    _report("Invalid base64 -> InvalidImageFormat",
            resp.error_type == "InvalidImageFormat", resp.error)
    resp = _request(handler, "load_packet", image=encode_image(gradient_image(16, 16)))
    _report("load_packet ok", resp.status == "ok"
            and resp.data["state"]["packet"]["width"] == 16)

    resp = _request(handler, "build_circuit", gates=[{"type": "cnot", "targets": [0, 5]}])
    _report("Bad circuit -> InvalidCircuit", resp.error_type == "InvalidCircuit")
    resp = _request(handler, "build_circuit",
                    gates=[{"type": "h", "targets": [0], "error_probability": "often"}])
    _report("Non-numeric error_probability -> InvalidCircuit, not EngineFault",
            resp.error_type == "InvalidCircuit", f"{resp.error_type}: {resp.error}")
    resp = _request(handler, "build_circuit", gates=SCENARIO_GATES)
    _report("build_circuit ok", resp.status == "ok")

    resp = _request(handler, "execute_step", include_image=False)
    _report("execute_step returns a result",
            resp.status == "ok" and resp.data["result"]["state"]["current_gate_index"] == 1)
    resp = _request(handler, "execute_all", include_image=False)
    _report("execute_all returns the remaining steps",
            len(resp.data["results"]) == 2
            and resp.data["results"][-1]["state"]["is_complete"])

    resp = _request(handler, "get_metrics")
    _report("get_metrics", 0.0 <= resp.data["metrics"]["coherence"] < 1.0)
    resp = _request(handler, "reset")
    _report("reset", resp.data["state"]["current_gate_index"] == 0)
    resp = _request(handler, "teleport")
    _report("Unknown action -> error", resp.status == "error")


# =========================================================================
# Test 16: Bridge over TCP with the remote adapter
# =========================================================================

def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_bridge_remote_adapter():
    """RemoteSimulationAdapter drives a served engine like a local one."""
    print("\nTest 16: Remote Adapter over TCP")
    print("-" * 40)

    port = _free_port()
    server = BridgeServer(BridgeCommandHandler(SimulationEngine(seed=4)), port)
    server.start()
    remote = RemoteSimulationAdapter(port=port, include_image=False)
    try:
        deadline = time.monotonic() + 5.0
        while True:
            try:
                remote.connect()
                break
            except OSError:
                remote.close()
                if time.monotonic() > deadline:
                    raise
                time.sleep(0.05)

        _report("ping over TCP", remote.ping())
        remote.initialize(SCENARIO_CONFIG)
        remote.load_packet(gradient_image(20, 20))
        ok, detail = _raises(
            lambda: remote.build_circuit([{"type": "cnot", "targets": [0, 5]}]),
            InvalidCircuit)
        _report("Remote InvalidCircuit raised locally", ok, detail)
        remote.build_circuit(Circuit.from_gates(SCENARIO_GATES))
        results = remote.execute_all()
        _report("Remote run yields 3 results", len(results) == 3
                and results[-1].state.is_complete)
        _report("Remote metrics match last step",
                remote.get_metrics() == results[-1].metrics)
        _report("Remote reset", remote.reset().current_gate_index == 0)
    finally:
        remote.close()
        server.stop()


# =========================================================================
# Test 17: Qt controller
# =========================================================================

def test_controller():
    """SimulationController runs the circuit from the Qt event loop."""
    print("\nTest 17: Simulation Controller")
    print("-" * 40)

    _report("Qt application alive", QCoreApplication.instance() is QT_APP)
    controller = SimulationController(SimulationEngine(seed=10))
    controller.set_step_delay(0)
    steps, errors, finished = [], [], []
    controller.step_completed.connect(steps.append)
    controller.error_occurred.connect(errors.append)
    controller.run_finished.connect(finished.append)

    controller.start()
    _report("Start before setup reports an error", len(errors) == 1
            and not controller.is_running)

    _report("configure", controller.configure(SCENARIO_CONFIG))
    _report("load_image", controller.load_image(gradient_image(24, 24)))
    _report("Bad circuit rejected via signal",
            not controller.set_circuit([{"type": "cnot", "targets": [0, 5]}])
            and len(errors) == 2)
    _report("set_circuit", controller.set_circuit(SCENARIO_GATES))

    loop = QEventLoop()
    controller.run_finished.connect(lambda _state: loop.quit())
    QTimer.singleShot(5000, loop.quit)
    controller.start()
    loop.exec()

    _report("Three steps emitted", len(steps) == 3, f"got {len(steps)}")
    _report("run_finished emitted once", len(finished) == 1
            and finished[0].is_complete)
    _report("Loop stopped", not controller.is_running)

    controller.reset()
    _report("reset() via controller",
            controller.engine.get_state().current_gate_index == 0)


# =========================================================================
# Main
# =========================================================================

def main():
    global PASS_COUNT, FAIL_COUNT
    print("=" * 50)
    print("Quantum Fragility Validation Test Harness")
    print("=" * 50)

    tests = [
        test_three_gate_scenario,
        test_state_machine_errors,
        test_reset_after_two_steps,
        test_fidelity_and_degradation,
        test_cnot_expected_degradation,
        test_decoherence_monotonic,
        test_measurement_and_cnot_invariants,
        test_noise_scaling,
        test_metrics,
        test_image_processor,
        test_configuration,
        test_pause_resume_and_async,
        test_engine_fault,
        test_persistence,
        test_bridge_handler,
        test_bridge_remote_adapter,
        test_controller,
    ]

    for test_fn in tests:
        try:
            test_fn()
        except AssertionError:
            # Already counted by _report; move on to the next test.
            continue
        except Exception:
            print(f"\n  [ERROR] {test_fn.__name__} raised an exception:")
            traceback.print_exc()
            FAIL_COUNT += 1

    print("\n" + "=" * 50)
    total = PASS_COUNT + FAIL_COUNT
    print(f"Results: {PASS_COUNT}/{total} passed, {FAIL_COUNT} failed")
    if FAIL_COUNT == 0:
        print("ALL TESTS PASSED")
    else:
        print("SOME TESTS FAILED")
    print("=" * 50)

    return 0 if FAIL_COUNT == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
