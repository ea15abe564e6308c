"""Continuous, time-proportional loss of coherence."""

from __future__ import annotations

from dataclasses import dataclass, field

from .events import EventType, SimulationEvent, VisualUpdate, VisualUpdateType
from .image_processor import Corruption, CorruptionType, ImageProcessor, QuantumPacket
from .qubit import Qubit, clamp, copy_qubits, unlink

DECOHERENCE_SCALE = 0.5
ENTANGLEMENT_BREAK_THRESHOLD = 0.1
COHERENCE_ALERT_THRESHOLD = 0.5


@dataclass
class DecoherenceResult:
    packet: QuantumPacket
    qubits: list[Qubit]
    coherence_loss: float
    fading: dict[str, float] = field(default_factory=dict)
    broken_links: list[tuple[str, str]] = field(default_factory=list)
    corruption: Corruption | None = None
    events: list[SimulationEvent] = field(default_factory=list)
    visual_updates: list[VisualUpdate] = field(default_factory=list)


class DecoherenceEngine:
    """Drains coherence, superposition and entanglement as time passes.

    ``coherence_loss = delta_time * rate * scale``. Superposition drops at
    half that speed, entanglement strength at ``link.decay_rate`` times it.
    Links at or below the break threshold are removed from both partners.
    Once every qubit has reached zero coherence the engine does nothing.
    """

    def __init__(self, processor: ImageProcessor | None = None,
                 scale: float = DECOHERENCE_SCALE,
                 break_threshold: float = ENTANGLEMENT_BREAK_THRESHOLD,
                 alert_threshold: float = COHERENCE_ALERT_THRESHOLD):
        self._processor = processor or ImageProcessor()
        self.scale = scale
        self.break_threshold = break_threshold
        self.alert_threshold = alert_threshold

    def coherence_loss(self, delta_time: float, rate: float) -> float:
        return max(0.0, delta_time * rate * self.scale)

    def apply(self, qubits: list[Qubit], packet: QuantumPacket,
              delta_time: float, rate: float,
              elapsed_time: float = 0.0) -> DecoherenceResult:
        loss = self.coherence_loss(delta_time, rate)
        new_qubits = copy_qubits(qubits)

        if loss == 0.0 or all(q.coherence == 0.0 for q in qubits):
            return DecoherenceResult(packet=packet.copy(), qubits=new_qubits,
                                     coherence_loss=0.0)

        events: list[SimulationEvent] = []
        visuals: list[VisualUpdate] = []
        fading: dict[str, float] = {}
        by_id = {q.id: q for q in new_qubits}

        for q in new_qubits:
            before = q.coherence
            q.coherence = clamp(before - loss)
            q.superposition_level = clamp(q.superposition_level - loss * 0.5)
            fading[q.id] = before - q.coherence
            if before > self.alert_threshold >= q.coherence:
                events.append(SimulationEvent(
                    EventType.COHERENCE_THRESHOLD_CROSSED, elapsed_time, None, [q.id],
                    {"threshold": self.alert_threshold, "coherence": q.coherence}))
            if fading[q.id] > 0.0:
                visuals.append(VisualUpdate(
                    VisualUpdateType.QUBIT_STATE_CHANGE, q.id,
                    {"superposition_level": q.superposition_level,
                     "coherence": q.coherence, "fade": fading[q.id]},
                    duration_ms=1000))

        broken: list[tuple[str, str]] = []
        for q in new_qubits:
            for partner_id, e in list(q.entanglements.items()):
                if q.id > partner_id:
                    continue  # each undirected link handled once from its lower id
                strength = e.strength - loss * e.decay_rate
                partner = by_id[partner_id]
                if strength <= self.break_threshold:
                    unlink(q, partner)
                    broken.append((q.id, partner_id))
                    events.append(SimulationEvent(
                        EventType.ENTANGLEMENT_BROKEN, elapsed_time, None,
                        [q.id, partner_id], {"reason": "decoherence"}))
                    visuals.append(VisualUpdate(
                        VisualUpdateType.ENTANGLEMENT_HIDE, f"{q.id}-{partner_id}",
                        {"from": q.id, "to": partner_id}, duration_ms=500))
                else:
                    e.strength = strength
                    partner.entanglements[q.id].strength = strength

        corruption = Corruption(CorruptionType.FADE, clamp(loss * 2.0))
        new_packet = self._processor.corrupt_packet(
            packet, corruption, source="decoherence",
            degradation=corruption.intensity, elapsed_time=elapsed_time)
        visuals.append(VisualUpdate(
            VisualUpdateType.PACKET_DEGRADE, "packet",
            {"corruption": CorruptionType.FADE.value, "intensity": corruption.intensity,
             "degradation_level": new_packet.degradation_level},
            duration_ms=1000))

        events.insert(0, SimulationEvent(
            EventType.DECOHERENCE_TICK, elapsed_time, None,
            [q.id for q in new_qubits], {"coherence_loss": loss}))

        return DecoherenceResult(
            packet=new_packet,
            qubits=new_qubits,
            coherence_loss=loss,
            fading=fading,
            broken_links=broken,
            corruption=corruption,
            events=events,
            visual_updates=visuals,
        )
