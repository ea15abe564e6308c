"""Validated simulation parameters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

MIN_QUBITS = 3
MAX_QUBITS = 8
MAX_ANIMATION_SPEED = 10.0

_UNIT_FIELDS = ("noise_level", "decoherence_rate", "gate_error_probability")


@dataclass(frozen=True)
class SimulationConfig:
    """Parameters of one simulation run.

    ``qubit_count`` must be in [3, 8]; noise level, decoherence rate and
    gate error probability in [0, 1]; ``animation_speed`` in (0, 10] and
    only paces the run loop.
    """
    qubit_count: int = 3
    noise_level: float = 0.2
    decoherence_rate: float = 0.1
    gate_error_probability: float = 0.1
    animation_speed: float = 1.0

    def validate(self) -> SimulationConfig:
        """Return self, or raise InvalidConfiguration naming every bad field."""
        problems = []
        if (isinstance(self.qubit_count, bool) or not isinstance(self.qubit_count, int)
                or not MIN_QUBITS <= self.qubit_count <= MAX_QUBITS):
            problems.append(
                f"qubit_count must be an integer in [{MIN_QUBITS}, {MAX_QUBITS}], "
                f"got {self.qubit_count!r}")
        for name in _UNIT_FIELDS:
            value = getattr(self, name)
            if not _is_number(value) or not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be in [0, 1], got {value!r}")
        speed = self.animation_speed
        if not _is_number(speed) or not 0.0 < speed <= MAX_ANIMATION_SPEED:
            problems.append(
                f"animation_speed must be in (0, {MAX_ANIMATION_SPEED}], got {speed!r}")
        if problems:
            raise InvalidConfiguration("; ".join(problems))
        return self

    def clamped(self) -> SimulationConfig:
        """Copy with every numeric field pulled into range, logging each change."""
        changes = {}
        qubits = int(round(self.qubit_count))
        if not MIN_QUBITS <= qubits <= MAX_QUBITS or qubits != self.qubit_count:
            changes["qubit_count"] = min(MAX_QUBITS, max(MIN_QUBITS, qubits))
        for name in _UNIT_FIELDS:
            value = float(getattr(self, name))
            if not 0.0 <= value <= 1.0:
                changes[name] = min(1.0, max(0.0, value))
        speed = float(self.animation_speed)
        if not 0.0 < speed <= MAX_ANIMATION_SPEED:
            changes["animation_speed"] = min(MAX_ANIMATION_SPEED, max(0.1, speed))
        for name, value in changes.items():
            logger.warning("Clamped %s from %r to %r", name, getattr(self, name), value)
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> SimulationConfig:
        """Build from a dict; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
