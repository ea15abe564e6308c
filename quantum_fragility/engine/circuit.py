"""Circuit data model: an ordered list of gates over the configured qubits."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from .config import _is_number
from .errors import InvalidCircuit


class GateType(Enum):
    HADAMARD = "hadamard"
    CNOT = "cnot"
    PHASE = "phase"
    IDENTITY = "identity"
    MEASURE = "measure"

    @classmethod
    def parse(cls, value: str | GateType) -> GateType:
        """Accept enum members, values, names, or the short symbols H/CX/P/I/M."""
        if isinstance(value, GateType):
            return value
        key = str(value).strip().lower()
        aliases = {"h": cls.HADAMARD, "cx": cls.CNOT, "p": cls.PHASE,
                   "s": cls.PHASE, "i": cls.IDENTITY, "id": cls.IDENTITY,
                   "m": cls.MEASURE}
        if key in aliases:
            return aliases[key]
        for member in cls:
            if key == member.value:
                return member
        raise InvalidCircuit(f"Unknown gate type: {value!r}")


@dataclass(frozen=True)
class Gate:
    """One gate in the circuit. Frozen: a running circuit cannot change."""
    type: GateType
    target_qubits: tuple[int, ...]
    control_qubits: tuple[int, ...] = ()
    position: int = 0
    error_probability: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def qubits(self) -> tuple[int, ...]:
        """Every qubit index this gate touches, controls first."""
        return self.control_qubits + self.target_qubits

    def cnot_pair(self) -> tuple[int, int]:
        """(control, target) for a CNOT."""
        if self.control_qubits:
            return self.control_qubits[0], self.target_qubits[0]
        return self.target_qubits[0], self.target_qubits[1]

    def validate(self, num_qubits: int):
        """Raise InvalidCircuit unless every index is in range and arity fits."""
        if not self.target_qubits:
            raise InvalidCircuit(f"Gate {self.id} ({self.type.value}) has no target qubits")
        for q in self.qubits:
            if not isinstance(q, int) or q < 0 or q >= num_qubits:
                raise InvalidCircuit(
                    f"Gate {self.id} ({self.type.value}) references qubit {q}, "
                    f"valid range is [0, {num_qubits - 1}]")
        if len(set(self.qubits)) != len(self.qubits):
            raise InvalidCircuit(
                f"Gate {self.id} ({self.type.value}) lists qubit indices more than once: "
                f"{list(self.qubits)}")
        if self.type == GateType.CNOT:
            if len(self.qubits) != 2:
                raise InvalidCircuit(
                    f"CNOT gate {self.id} needs exactly 2 qubits, got {len(self.qubits)}")
        elif self.control_qubits:
            raise InvalidCircuit(
                f"{self.type.value} gate {self.id} does not take control qubits")
        p = self.error_probability
        if p is not None and (not _is_number(p) or not 0.0 <= p <= 1.0):
            raise InvalidCircuit(
                f"Gate {self.id} error probability must be in [0, 1], "
                f"got {self.error_probability}")

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "type": self.type.value,
            "targets": list(self.target_qubits),
            "position": self.position,
        }
        if self.control_qubits:
            d["controls"] = list(self.control_qubits)
        if self.error_probability is not None:
            d["error_probability"] = self.error_probability
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Gate:
        try:
            targets = data.get("targets", data.get("target_qubits"))
            kwargs = {
                "type": GateType.parse(data["type"]),
                "target_qubits": tuple(int(q) for q in targets),
                "control_qubits": tuple(
                    int(q) for q in data.get("controls", data.get("control_qubits")) or ()),
                "position": int(data.get("position", 0)),
                "error_probability": _optional_probability(data.get("error_probability")),
            }
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCircuit(f"Malformed gate definition {data!r}: {e}") from e
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)


@dataclass
class Circuit:
    """The user-authored gate sequence, kept in ``position`` order."""
    gates: list[Gate] = field(default_factory=list)

    def __post_init__(self):
        self.gates = sorted(self.gates, key=lambda g: g.position)

    @classmethod
    def from_gates(cls, gates: list[Gate | dict]) -> Circuit:
        """Build from gates or gate dicts; positions default to list order."""
        built = []
        for i, g in enumerate(gates):
            if isinstance(g, dict):
                g = Gate.from_dict({"position": i, **g})
            built.append(g)
        return cls(built)

    def validate(self, num_qubits: int):
        if not self.gates:
            raise InvalidCircuit("Circuit has no gates")
        seen: set[str] = set()
        for gate in self.gates:
            if gate.id in seen:
                raise InvalidCircuit(f"Duplicate gate id {gate.id}")
            seen.add(gate.id)
            gate.validate(num_qubits)

    def gate_count(self) -> int:
        return len(self.gates)

    def __len__(self) -> int:
        return len(self.gates)

    def __getitem__(self, index: int) -> Gate:
        return self.gates[index]

    def to_dict(self) -> dict:
        return {
            "version": "1.0",
            "gates": [g.to_dict() for g in self.gates],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Circuit:
        return cls.from_gates(list(data["gates"]))


def _optional_probability(value) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"error_probability must be a number, got {value!r}")
    return float(value)
