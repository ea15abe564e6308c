"""Stochastic environmental noise.

Noise is intensity-scaled: a higher intensity makes disturbances both more
likely and larger, for qubits and packet alike. The particle descriptors
it emits are eye candy for the renderer and have no effect on state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .events import EventType, SimulationEvent, VisualUpdate, VisualUpdateType
from .image_processor import Corruption, CorruptionType, ImageProcessor, QuantumPacket
from .qubit import Qubit, clamp, copy_qubits

QUBIT_HIT_RATE = 0.1
QUBIT_MAX_DISTURBANCE = 0.2
PACKET_HIT_RATE = 0.05
PACKET_MAX_DISTORTION = 0.1
MAX_PARTICLES = 40

_PACKET_DISTORTIONS = (CorruptionType.BLUR, CorruptionType.COLOR_SHIFT)
_PARTICLE_COLORS = ("#7FDBFF", "#B10DC9", "#FF4136", "#FFDC00")


@dataclass
class Particle:
    """A single noise particle for the visualization layer."""
    position: tuple[float, float, float]
    velocity: tuple[float, float, float]
    color: str
    size: float
    lifetime_ms: int

    def to_dict(self) -> dict:
        return {
            "position": list(self.position),
            "velocity": list(self.velocity),
            "color": self.color,
            "size": self.size,
            "lifetime_ms": self.lifetime_ms,
        }


@dataclass
class NoiseResult:
    packet: QuantumPacket
    qubits: list[Qubit]
    disturbances: dict[str, float] = field(default_factory=dict)
    corruption: Corruption | None = None
    particles: list[Particle] = field(default_factory=list)
    events: list[SimulationEvent] = field(default_factory=list)
    visual_updates: list[VisualUpdate] = field(default_factory=list)


class NoiseGenerator:
    """Applies random, intensity-scaled disturbances."""

    def __init__(self, processor: ImageProcessor | None = None):
        self._processor = processor or ImageProcessor()

    @staticmethod
    def particle_count(intensity: float) -> int:
        return int(round(clamp(intensity) * MAX_PARTICLES))

    def apply(self, qubits: list[Qubit], packet: QuantumPacket, intensity: float,
              rng: np.random.Generator, elapsed_time: float = 0.0) -> NoiseResult:
        intensity = clamp(intensity)
        new_qubits = copy_qubits(qubits)
        if intensity == 0.0:
            return NoiseResult(packet=packet.copy(), qubits=new_qubits)

        visuals: list[VisualUpdate] = []
        disturbances: dict[str, float] = {}
        for q in new_qubits:
            if rng.random() < intensity * QUBIT_HIT_RATE:
                amount = float(rng.random() * intensity * QUBIT_MAX_DISTURBANCE)
                before = q.coherence
                q.coherence = clamp(before - amount)
                disturbances[q.id] = before - q.coherence
                visuals.append(VisualUpdate(
                    VisualUpdateType.QUBIT_STATE_CHANGE, q.id,
                    {"superposition_level": q.superposition_level,
                     "coherence": q.coherence, "jitter": amount},
                    duration_ms=200))

        corruption = None
        new_packet = packet.copy()
        if rng.random() < intensity * PACKET_HIT_RATE:
            kind = _PACKET_DISTORTIONS[int(rng.integers(len(_PACKET_DISTORTIONS)))]
            corruption = Corruption(kind, float(rng.random() * intensity * PACKET_MAX_DISTORTION))
            new_packet = self._processor.corrupt_packet(
                packet, corruption, source="noise", degradation=corruption.intensity,
                rng=rng, elapsed_time=elapsed_time)
            visuals.append(VisualUpdate(
                VisualUpdateType.PACKET_DEGRADE, "packet",
                {"corruption": kind.value, "intensity": corruption.intensity,
                 "degradation_level": new_packet.degradation_level},
                duration_ms=200))

        particles = self._particles(intensity, rng)
        if particles:
            visuals.append(VisualUpdate(
                VisualUpdateType.PARTICLE_EMIT, "noise",
                {"particles": [p.to_dict() for p in particles]}))

        events = []
        if disturbances or corruption is not None:
            events.append(SimulationEvent(
                EventType.NOISE_APPLIED, elapsed_time, None, sorted(disturbances),
                {"intensity": intensity, "disturbances": disturbances,
                 "packet_corruption": corruption.to_dict() if corruption else None}))

        return NoiseResult(
            packet=new_packet,
            qubits=new_qubits,
            disturbances=disturbances,
            corruption=corruption,
            particles=particles,
            events=events,
            visual_updates=visuals,
        )

    def _particles(self, intensity: float, rng: np.random.Generator) -> list[Particle]:
        count = self.particle_count(intensity)
        if count == 0:
            return []
        positions = rng.uniform(-1.0, 1.0, size=(count, 3))
        velocities = rng.normal(0.0, 0.05 + 0.2 * intensity, size=(count, 3))
        colors = rng.integers(len(_PARTICLE_COLORS), size=count)
        return [
            Particle(
                position=tuple(float(v) for v in positions[i]),
                velocity=tuple(float(v) for v in velocities[i]),
                color=_PARTICLE_COLORS[int(colors[i])],
                size=float(0.02 + 0.05 * intensity),
                lifetime_ms=int(500 + 1500 * intensity),
            )
            for i in range(count)
        ]
