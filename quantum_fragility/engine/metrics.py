"""Scalar metrics derived from the qubit set and recent gate results.

Pure functions: no mutation, no randomness.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .qubit import Qubit, active_links

FIDELITY_WINDOW = 10


@dataclass(frozen=True)
class SimulationMetrics:
    coherence: float = 1.0
    entanglement: float = 0.0
    gate_fidelity: float = 1.0

    def to_dict(self) -> dict:
        return {
            "coherence": self.coherence,
            "entanglement": self.entanglement,
            "gate_fidelity": self.gate_fidelity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SimulationMetrics:
        return cls(
            coherence=float(data.get("coherence", 1.0)),
            entanglement=float(data.get("entanglement", 0.0)),
            gate_fidelity=float(data.get("gate_fidelity", 1.0)),
        )


class MetricsCalculator:
    """Static methods computing the three simulation metrics."""

    @staticmethod
    def coherence(qubits: Sequence[Qubit]) -> float:
        """Mean qubit coherence; 0 for an empty set."""
        if not qubits:
            return 0.0
        return float(np.mean([q.coherence for q in qubits]))

    @staticmethod
    def entanglement(qubits: Sequence[Qubit]) -> float:
        """Link density times mean link strength.

        ``(active_links / (n(n-1)/2)) * mean_strength``; 0 with no qubits,
        a single qubit, or no links.
        """
        n = len(qubits)
        if n < 2:
            return 0.0
        links = active_links(list(qubits))
        if not links:
            return 0.0
        max_links = n * (n - 1) / 2
        mean_strength = float(np.mean([s for _, _, s in links]))
        return float(min(1.0, len(links) / max_links * mean_strength))

    @staticmethod
    def gate_fidelity(fidelities: Sequence[float], window: int = FIDELITY_WINDOW) -> float:
        """Trailing mean over the last ``window`` gate fidelities; 1 if none."""
        recent = list(fidelities)[-window:]
        if not recent:
            return 1.0
        return float(np.mean(recent))

    @staticmethod
    def calculate(qubits: Sequence[Qubit], fidelities: Sequence[float],
                  window: int = FIDELITY_WINDOW) -> SimulationMetrics:
        return SimulationMetrics(
            coherence=MetricsCalculator.coherence(qubits),
            entanglement=MetricsCalculator.entanglement(qubits),
            gate_fidelity=MetricsCalculator.gate_fidelity(fidelities, window),
        )
