"""Rule-based qubit model.

A qubit here is three scalars and a set of links, not a state vector:
``superposition_level`` and ``coherence`` live in [0, 1] and each
entanglement link carries its own strength and decay rate. Links are always
symmetric; use :func:`link` and :func:`unlink` so both partners change
together.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_ENTANGLEMENT_DECAY = 0.3


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return float(min(high, max(low, value)))


@dataclass
class Entanglement:
    """One side of a symmetric entanglement link."""
    strength: float
    decay_rate: float = DEFAULT_ENTANGLEMENT_DECAY

    def to_dict(self) -> dict:
        return {"strength": self.strength, "decay_rate": self.decay_rate}

    @classmethod
    def from_dict(cls, data: dict) -> Entanglement:
        return cls(
            strength=float(data["strength"]),
            decay_rate=float(data.get("decay_rate", DEFAULT_ENTANGLEMENT_DECAY)),
        )


@dataclass
class Qubit:
    """A single simulated qubit."""
    id: str
    superposition_level: float = 0.0
    coherence: float = 1.0
    entanglements: dict[str, Entanglement] = field(default_factory=dict)

    @property
    def is_collapsed(self) -> bool:
        """True once the qubit holds a definite, fully decohered state."""
        return (self.superposition_level == 0.0 and self.coherence == 0.0
                and not self.entanglements)

    def copy(self) -> Qubit:
        return Qubit(
            id=self.id,
            superposition_level=self.superposition_level,
            coherence=self.coherence,
            entanglements={
                partner: Entanglement(e.strength, e.decay_rate)
                for partner, e in self.entanglements.items()
            },
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "superposition_level": self.superposition_level,
            "coherence": self.coherence,
            "entanglements": {
                partner: e.to_dict() for partner, e in self.entanglements.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> Qubit:
        return cls(
            id=data["id"],
            superposition_level=float(data.get("superposition_level", 0.0)),
            coherence=float(data.get("coherence", 1.0)),
            entanglements={
                partner: Entanglement.from_dict(e)
                for partner, e in data.get("entanglements", {}).items()
            },
        )


def create_qubits(count: int) -> list[Qubit]:
    """Fresh qubits ``q0 .. q{count-1}`` in the definite, coherent state."""
    return [Qubit(id=f"q{i}") for i in range(count)]


def copy_qubits(qubits: list[Qubit]) -> list[Qubit]:
    return [q.copy() for q in qubits]


def link(a: Qubit, b: Qubit, strength: float,
         decay_rate: float = DEFAULT_ENTANGLEMENT_DECAY) -> bool:
    """Create or refresh a symmetric link. Returns True if it is new."""
    if a.id == b.id:
        raise ValueError(f"Qubit {a.id} cannot be entangled with itself")
    is_new = b.id not in a.entanglements
    a.entanglements[b.id] = Entanglement(strength, decay_rate)
    b.entanglements[a.id] = Entanglement(strength, decay_rate)
    return is_new


def unlink(a: Qubit, b: Qubit) -> bool:
    """Remove the link between two qubits on both sides."""
    removed = a.entanglements.pop(b.id, None) is not None
    removed = b.entanglements.pop(a.id, None) is not None or removed
    return removed


def active_links(qubits: list[Qubit]) -> list[tuple[str, str, float]]:
    """Each undirected link once, as ``(id_a, id_b, strength)`` with id_a < id_b."""
    links = []
    for q in qubits:
        for partner, e in q.entanglements.items():
            if q.id < partner:
                links.append((q.id, partner, e.strength))
    return links
