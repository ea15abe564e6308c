"""Engine status, state snapshots and per-step results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .circuit import Circuit
from .config import SimulationConfig
from .events import SimulationEvent, VisualUpdate
from .image_processor import QuantumPacket
from .metrics import SimulationMetrics
from .qubit import Qubit


class EngineStatus(Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class SimulationState:
    """Full snapshot of the engine."""
    status: EngineStatus = EngineStatus.IDLE
    config: SimulationConfig | None = None
    qubits: list[Qubit] = field(default_factory=list)
    packet: QuantumPacket | None = None
    circuit: Circuit | None = None
    current_gate_index: int = 0
    elapsed_time: float = 0.0
    is_complete: bool = False
    events: list[SimulationEvent] = field(default_factory=list)
    gate_fidelities: list[float] = field(default_factory=list)

    def copy(self) -> SimulationState:
        return SimulationState(
            status=self.status,
            config=self.config,
            qubits=[q.copy() for q in self.qubits],
            packet=self.packet.copy() if self.packet is not None else None,
            circuit=self.circuit,
            current_gate_index=self.current_gate_index,
            elapsed_time=self.elapsed_time,
            is_complete=self.is_complete,
            events=list(self.events),
            gate_fidelities=list(self.gate_fidelities),
        )

    def to_dict(self, include_image: bool = False) -> dict:
        return {
            "status": self.status.value,
            "config": self.config.to_dict() if self.config else None,
            "qubits": [q.to_dict() for q in self.qubits],
            "packet": (self.packet.to_dict(include_image)
                       if self.packet is not None else None),
            "circuit": self.circuit.to_dict() if self.circuit else None,
            "current_gate_index": self.current_gate_index,
            "elapsed_time": self.elapsed_time,
            "is_complete": self.is_complete,
            "events": [e.to_dict() for e in self.events],
            "gate_fidelities": list(self.gate_fidelities),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SimulationState:
        return cls(
            status=EngineStatus(data.get("status", "idle")),
            config=(SimulationConfig.from_dict(data["config"])
                    if data.get("config") else None),
            qubits=[Qubit.from_dict(q) for q in data.get("qubits", [])],
            packet=(QuantumPacket.from_dict(data["packet"])
                    if data.get("packet") else None),
            circuit=Circuit.from_dict(data["circuit"]) if data.get("circuit") else None,
            current_gate_index=int(data.get("current_gate_index", 0)),
            elapsed_time=float(data.get("elapsed_time", 0.0)),
            is_complete=bool(data.get("is_complete", False)),
            events=[SimulationEvent.from_dict(e) for e in data.get("events", [])],
            gate_fidelities=[float(f) for f in data.get("gate_fidelities", [])],
        )


@dataclass
class StepResult:
    """What one ``step()`` hands back to the caller.

    ``event`` is the headline event of the step, or ``None`` for the
    terminal result returned once the circuit is exhausted.
    """
    state: SimulationState
    event: SimulationEvent | None
    metrics: SimulationMetrics
    visual_updates: list[VisualUpdate] = field(default_factory=list)

    def to_dict(self, include_image: bool = False) -> dict:
        return {
            "state": self.state.to_dict(include_image),
            "event": self.event.to_dict() if self.event else None,
            "metrics": self.metrics.to_dict(),
            "visual_updates": [v.to_dict() for v in self.visual_updates],
        }

    @classmethod
    def from_dict(cls, data: dict) -> StepResult:
        return cls(
            state=SimulationState.from_dict(data["state"]),
            event=SimulationEvent.from_dict(data["event"]) if data.get("event") else None,
            metrics=SimulationMetrics.from_dict(data["metrics"]),
            visual_updates=[VisualUpdate.from_dict(v)
                            for v in data.get("visual_updates", [])],
        )
