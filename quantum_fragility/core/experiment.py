"""Run records and seed management for reproducibility.

Provides :class:`RunRecord` for serialising a finished (or partial) run:
configuration, circuit, seed, per-step metrics and events. It also provides
:class:`SeedManager` for deterministic child random generators.
"""

from __future__ import annotations

import datetime
import json
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from pathlib import Path

import numpy as np

from quantum_fragility.engine.state import StepResult
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.circuit import Circuit


def _encode_extra(obj):
    """``json.dumps`` fallback for values users put in ``metadata``."""
    if isinstance(obj, (np.ndarray, np.generic)):
        return obj.tolist()
    if isinstance(obj, Enum):
        return obj.value
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    raise TypeError(f"{type(obj).__name__} cannot be stored in a run record")


# ---------------------------------------------------------------------------
# RunRecord
# ---------------------------------------------------------------------------

@dataclass
class RunRecord:
    """Snapshot of one simulation run.

    Parameters
    ----------
    seed : int | None
        Seed of the engine's random source, ``None`` when unseeded.
    config : dict | None
        Serialised :class:`SimulationConfig`.
    circuit : dict | None
        Serialised :class:`Circuit`.
    steps : list[dict]
        One entry per step: gate index, headline event, metrics and the
        packet degradation level after the step.
    final_degradation : float
        Packet degradation level after the last recorded step.
    timestamp : str
        ISO-8601 creation time.
    metadata : dict | None
        Free-form notes.
    """

    seed: int | None = None
    config: dict | None = None
    circuit: dict | None = None
    steps: list[dict] = field(default_factory=list)
    final_degradation: float = 0.0
    timestamp: str = ""
    simulator_version: str = "1.0.0"
    metadata: dict | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, default=_encode_extra)

    def save(self, filepath: str | Path) -> None:
        """Write the record to a JSON file, creating parent directories."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def from_json(cls, json_str: str) -> RunRecord:
        data = json.loads(json_str)
        return cls(**data)

    @classmethod
    def load(cls, filepath: str | Path) -> RunRecord:
        path = Path(filepath)
        return cls.from_json(path.read_text(encoding="utf-8"))

    @classmethod
    def from_results(
        cls,
        config: SimulationConfig,
        circuit: Circuit,
        results: list[StepResult],
        seed: int | None = None,
        metadata: dict | None = None,
    ) -> RunRecord:
        """Build a record right after a run.

        Parameters
        ----------
        config : SimulationConfig
            Configuration the engine was initialized with.
        circuit : Circuit
            The circuit that ran.
        results : list[StepResult]
            Step results in order; terminal results (no event) are skipped.
        seed : int | None, optional
            Seed of the engine's random source.
        metadata : dict | None, optional
            Free-form notes stored alongside.
        """
        steps = []
        for r in results:
            if r.event is None:
                continue
            steps.append({
                "gate_index": r.state.current_gate_index - 1,
                "event": r.event.type.value,
                "metrics": r.metrics.to_dict(),
                "degradation_level": r.state.packet.degradation_level,
                "elapsed_time": r.state.elapsed_time,
            })
        final = steps[-1]["degradation_level"] if steps else 0.0
        return cls(
            seed=seed,
            config=config.to_dict(),
            circuit=circuit.to_dict(),
            steps=steps,
            final_degradation=final,
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            metadata=metadata,
        )

    def simulation_config(self) -> SimulationConfig | None:
        return SimulationConfig.from_dict(self.config) if self.config else None

    def rebuild_circuit(self) -> Circuit | None:
        return Circuit.from_dict(self.circuit) if self.circuit else None


# ---------------------------------------------------------------------------
# SeedManager
# ---------------------------------------------------------------------------

class SeedManager:
    """Deterministic seed manager that hands out child seeds.

    Wraps NumPy's :class:`numpy.random.Generator`. A fixed master seed
    guarantees that successive calls to :pymeth:`child_seed` always return
    the same sequence, so a batch of engines (one per trial) is
    reproducible from a single number.

    Examples
    --------
    >>> mgr = SeedManager(42)
    >>> a = mgr.child_seed()
    >>> mgr.reset()
    >>> a == mgr.child_seed()
    True
    """

    def __init__(self, seed: int | None = None):
        self._master_seed = seed
        self._rng = np.random.default_rng(seed)

    @property
    def seed(self) -> int | None:
        return self._master_seed

    def child_seed(self) -> int:
        """Next child seed; advances the master sequence."""
        return int(self._rng.integers(0, 2**63))

    def create_child_rng(self) -> np.random.Generator:
        return np.random.default_rng(self.child_seed())

    def reset(self) -> None:
        """Rewind to the master seed."""
        self._rng = np.random.default_rng(self._master_seed)
