"""Gate definitions and the pure per-gate operations.

Every operation takes the current packet and qubits and returns new ones.
Inputs are never modified, so a caller can keep the previous values around
for history or comparison.

Error model: with probability ``p`` a gate suffers an error drawn uniformly
from ``[0, error_ceiling)``; fidelity is ``1 - error``. Ceilings are fixed
per gate and ordered Identity < Phase < Hadamard < CNOT, so a two-qubit gate
can always go further wrong than any single-qubit gate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from .circuit import Gate, GateType
from .errors import EngineFault
from .events import EventType, SimulationEvent, VisualUpdate, VisualUpdateType
from .image_processor import Corruption, CorruptionType, ImageProcessor, QuantumPacket
from .qubit import Qubit, clamp, copy_qubits, link, unlink

CNOT_ENTANGLEMENT_STRENGTH = 0.8
HADAMARD_SUPERPOSITION_STEP = 0.5
MEASURE_PIXELATE_INTENSITY = 0.5


@dataclass(frozen=True)
class GateDefinition:
    """Immutable description of how a gate type behaves."""
    gate_type: GateType
    display_name: str
    symbol: str
    color: str
    num_qubits: int
    error_ceiling: float
    corruption: CorruptionType
    corruption_weight: float
    fixed_intensity: float | None = None


GATE_DEFINITIONS: dict[GateType, GateDefinition] = {
    GateType.IDENTITY: GateDefinition(
        GateType.IDENTITY, "Identity", "I", "#888888", 1,
        error_ceiling=0.1, corruption=CorruptionType.FADE, corruption_weight=0.05),
    GateType.PHASE: GateDefinition(
        GateType.PHASE, "Phase", "P", "#9B59B6", 1,
        error_ceiling=0.2, corruption=CorruptionType.COLOR_SHIFT, corruption_weight=0.15),
    GateType.HADAMARD: GateDefinition(
        GateType.HADAMARD, "Hadamard", "H", "#4A90D9", 1,
        error_ceiling=0.3, corruption=CorruptionType.BLUR, corruption_weight=0.2),
    GateType.CNOT: GateDefinition(
        GateType.CNOT, "CNOT", "⊕", "#E74C3C", 2,
        error_ceiling=0.5, corruption=CorruptionType.PIXELATE, corruption_weight=0.3),
    GateType.MEASURE: GateDefinition(
        GateType.MEASURE, "Measure", "M", "#2ECC71", 1,
        error_ceiling=0.0, corruption=CorruptionType.PIXELATE, corruption_weight=0.0,
        fixed_intensity=MEASURE_PIXELATE_INTENSITY),
}


@dataclass
class GateResult:
    """Everything a single gate application produced."""
    packet: QuantumPacket
    qubits: list[Qubit]
    fidelity: float
    actual_error: float
    corruption: Corruption | None = None
    events: list[SimulationEvent] = field(default_factory=list)
    visual_updates: list[VisualUpdate] = field(default_factory=list)


def sample_error(definition: GateDefinition, error_probability: float,
                 rng: np.random.Generator) -> float:
    """Draw the actual error of one gate application."""
    if definition.error_ceiling <= 0.0:
        return 0.0
    if rng.random() < error_probability:
        return float(rng.random() * definition.error_ceiling)
    return 0.0


def _resolve(qubits: list[Qubit], index: int, gate: Gate) -> Qubit:
    if index < 0 or index >= len(qubits):
        raise EngineFault(
            f"Gate {gate.id} ({gate.type.value}) addresses qubit {index} "
            f"but only {len(qubits)} qubits exist")
    return qubits[index]


def _qubit_visual(q: Qubit, duration_ms: int = 400) -> VisualUpdate:
    return VisualUpdate(
        VisualUpdateType.QUBIT_STATE_CHANGE, q.id,
        {"superposition_level": q.superposition_level, "coherence": q.coherence},
        duration_ms=duration_ms)


# ---- Qubit effects (operate on already-copied qubits) ---------------------

def _hadamard_effect(qubits: list[Qubit], gate: Gate, rng: np.random.Generator,
                     t: float) -> tuple[list[SimulationEvent], list[VisualUpdate]]:
    events, visuals = [], []
    for index in gate.target_qubits:
        q = _resolve(qubits, index, gate)
        before = q.superposition_level
        q.superposition_level = clamp(before + HADAMARD_SUPERPOSITION_STEP)
        if before == 0.0 and q.superposition_level > 0.0:
            events.append(SimulationEvent(
                EventType.SUPERPOSITION_ENTERED, t, gate.id, [q.id],
                {"superposition_level": q.superposition_level}))
        visuals.append(_qubit_visual(q))
    return events, visuals


def _cnot_effect(qubits: list[Qubit], gate: Gate, rng: np.random.Generator,
                 t: float) -> tuple[list[SimulationEvent], list[VisualUpdate]]:
    c_index, t_index = gate.cnot_pair()
    control, target = _resolve(qubits, c_index, gate), _resolve(qubits, t_index, gate)
    if control.id == target.id:
        raise EngineFault(f"CNOT gate {gate.id} resolves to a single qubit {control.id}")
    is_new = link(control, target, CNOT_ENTANGLEMENT_STRENGTH)
    events = []
    if is_new:
        events.append(SimulationEvent(
            EventType.ENTANGLEMENT_FORMED, t, gate.id, [control.id, target.id],
            {"strength": CNOT_ENTANGLEMENT_STRENGTH}))
    visuals = [VisualUpdate(
        VisualUpdateType.ENTANGLEMENT_SHOW, f"{control.id}-{target.id}",
        {"from": control.id, "to": target.id,
         "strength": CNOT_ENTANGLEMENT_STRENGTH, "refreshed": not is_new},
        duration_ms=600)]
    return events, visuals


def _no_effect(qubits: list[Qubit], gate: Gate, rng: np.random.Generator,
               t: float) -> tuple[list[SimulationEvent], list[VisualUpdate]]:
    # Phase and identity leave the visible qubit state alone.
    for index in gate.target_qubits:
        _resolve(qubits, index, gate)
    return [], []


def _measure_effect(qubits: list[Qubit], gate: Gate, rng: np.random.Generator,
                    t: float) -> tuple[list[SimulationEvent], list[VisualUpdate]]:
    by_id = {q.id: q for q in qubits}
    events, visuals = [], []
    for index in gate.target_qubits:
        q = _resolve(qubits, index, gate)
        had_superposition = q.superposition_level
        outcome = int(rng.random() < 0.5 * had_superposition)
        for partner_id in sorted(q.entanglements):
            partner = by_id.get(partner_id)
            if partner is None:
                raise EngineFault(f"Qubit {q.id} is linked to missing qubit {partner_id}")
            unlink(q, partner)
            events.append(SimulationEvent(
                EventType.ENTANGLEMENT_BROKEN, t, gate.id, [q.id, partner_id],
                {"reason": "measurement"}))
            visuals.append(VisualUpdate(
                VisualUpdateType.ENTANGLEMENT_HIDE, f"{q.id}-{partner_id}",
                {"from": q.id, "to": partner_id}, duration_ms=300))
        q.superposition_level = 0.0
        q.coherence = 0.0
        if had_superposition > 0.0:
            events.append(SimulationEvent(
                EventType.SUPERPOSITION_COLLAPSED, t, gate.id, [q.id],
                {"previous_level": had_superposition}))
        events.append(SimulationEvent(
            EventType.MEASUREMENT_PERFORMED, t, gate.id, [q.id], {"outcome": outcome}))
        visuals.append(VisualUpdate(
            VisualUpdateType.MEASUREMENT_COLLAPSE, q.id,
            {"outcome": outcome, "superposition_level": 0.0, "coherence": 0.0},
            duration_ms=800))
    return events, visuals


_EFFECTS: dict[GateType, Callable] = {
    GateType.HADAMARD: _hadamard_effect,
    GateType.CNOT: _cnot_effect,
    GateType.PHASE: _no_effect,
    GateType.IDENTITY: _no_effect,
    GateType.MEASURE: _measure_effect,
}


# ---- Public operation -----------------------------------------------------

def apply_gate(packet: QuantumPacket, qubits: list[Qubit], gate: Gate,
               error_probability: float, rng: np.random.Generator,
               processor: ImageProcessor | None = None,
               elapsed_time: float = 0.0) -> GateResult:
    """Apply one gate and return the new packet, qubits, fidelity and effects.

    Args:
        packet: Current packet (not modified).
        qubits: Current qubits (not modified).
        gate: The gate to apply. ``gate.error_probability`` overrides
            ``error_probability`` when set.
        error_probability: Chance that the gate suffers an error.
        rng: Random source for the error draw and colour shifts.
        processor: Image processor used for the packet corruption.
        elapsed_time: Simulation clock, stamped on events and history.

    Raises:
        EngineFault: the gate addresses a qubit that does not exist.
    """
    definition = GATE_DEFINITIONS[gate.type]
    processor = processor or ImageProcessor()
    p = gate.error_probability if gate.error_probability is not None else error_probability

    new_qubits = copy_qubits(qubits)
    events, visuals = _EFFECTS[gate.type](new_qubits, gate, rng, elapsed_time)

    error = sample_error(definition, p, rng)
    fidelity = clamp(1.0 - error)

    if definition.fixed_intensity is not None:
        intensity = definition.fixed_intensity
    else:
        intensity = error * definition.corruption_weight

    corruption = None
    if intensity > 0.0:
        corruption = Corruption(definition.corruption, intensity)
        new_packet = processor.corrupt_packet(
            packet, corruption, source=f"gate:{gate.id}",
            degradation=error * definition.corruption_weight,
            rng=rng, elapsed_time=elapsed_time)
        visuals.append(VisualUpdate(
            VisualUpdateType.PACKET_DEGRADE, "packet",
            {"corruption": definition.corruption.value, "intensity": intensity,
             "degradation_level": new_packet.degradation_level},
            duration_ms=500))
    else:
        new_packet = packet.copy()

    qubit_ids = [new_qubits[i].id for i in gate.qubits]
    events.insert(0, SimulationEvent(
        EventType.GATE_APPLIED, elapsed_time, gate.id, qubit_ids,
        {"gate_type": gate.type.value, "fidelity": fidelity, "error": error}))
    visuals.insert(0, VisualUpdate(
        VisualUpdateType.GATE_ACTIVATE, gate.id,
        {"gate_type": gate.type.value, "symbol": definition.symbol,
         "color": definition.color, "qubits": qubit_ids,
         "fidelity": fidelity, "error": error},
        duration_ms=300))

    return GateResult(
        packet=new_packet,
        qubits=new_qubits,
        fidelity=fidelity,
        actual_error=error,
        corruption=corruption,
        events=events,
        visual_updates=visuals,
    )
