"""Simulation events and visual-update descriptors.

These are the records the engine hands to the outside world. The
visualization layer interprets ``VisualUpdate.properties`` freely; the
engine only promises the ``type`` and ``target_id`` vocabulary below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventType(Enum):
    GATE_APPLIED = "gate_applied"
    DECOHERENCE_TICK = "decoherence_tick"
    NOISE_APPLIED = "noise_applied"
    ENTANGLEMENT_FORMED = "entanglement_formed"
    ENTANGLEMENT_BROKEN = "entanglement_broken"
    SUPERPOSITION_ENTERED = "superposition_entered"
    SUPERPOSITION_COLLAPSED = "superposition_collapsed"
    MEASUREMENT_PERFORMED = "measurement_performed"
    COHERENCE_THRESHOLD_CROSSED = "coherence_threshold_crossed"


# Which event headlines a step when several fire at once (lower wins).
EVENT_PRIORITY = {
    EventType.MEASUREMENT_PERFORMED: 0,
    EventType.ENTANGLEMENT_FORMED: 1,
    EventType.SUPERPOSITION_ENTERED: 2,
    EventType.SUPERPOSITION_COLLAPSED: 3,
    EventType.ENTANGLEMENT_BROKEN: 4,
    EventType.COHERENCE_THRESHOLD_CROSSED: 5,
    EventType.GATE_APPLIED: 6,
    EventType.NOISE_APPLIED: 7,
    EventType.DECOHERENCE_TICK: 8,
}


class VisualUpdateType(Enum):
    QUBIT_STATE_CHANGE = "qubit_state_change"
    PACKET_DEGRADE = "packet_degrade"
    GATE_ACTIVATE = "gate_activate"
    ENTANGLEMENT_SHOW = "entanglement_show"
    ENTANGLEMENT_HIDE = "entanglement_hide"
    MEASUREMENT_COLLAPSE = "measurement_collapse"
    PARTICLE_EMIT = "particle_emit"


@dataclass
class SimulationEvent:
    type: EventType
    elapsed_time: float = 0.0
    gate_id: str | None = None
    qubit_ids: list[str] = field(default_factory=list)
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "elapsed_time": self.elapsed_time,
            "gate_id": self.gate_id,
            "qubit_ids": list(self.qubit_ids),
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SimulationEvent:
        return cls(
            type=EventType(data["type"]),
            elapsed_time=float(data.get("elapsed_time", 0.0)),
            gate_id=data.get("gate_id"),
            qubit_ids=list(data.get("qubit_ids", [])),
            data=dict(data.get("data", {})),
        )


@dataclass
class VisualUpdate:
    """Instruction for the renderer, with optional animation timing hints."""
    type: VisualUpdateType
    target_id: str
    properties: dict = field(default_factory=dict)
    duration_ms: int | None = None
    delay_ms: int | None = None

    def to_dict(self) -> dict:
        d = {
            "type": self.type.value,
            "target_id": self.target_id,
            "properties": dict(self.properties),
        }
        if self.duration_ms is not None:
            d["duration_ms"] = self.duration_ms
        if self.delay_ms is not None:
            d["delay_ms"] = self.delay_ms
        return d

    @classmethod
    def from_dict(cls, data: dict) -> VisualUpdate:
        return cls(
            type=VisualUpdateType(data["type"]),
            target_id=data["target_id"],
            properties=dict(data.get("properties", {})),
            duration_ms=data.get("duration_ms"),
            delay_ms=data.get("delay_ms"),
        )


def headline(events: list[SimulationEvent]) -> SimulationEvent | None:
    """The single most significant event of a step."""
    if not events:
        return None
    return min(events, key=lambda e: EVENT_PRIORITY[e.type])
