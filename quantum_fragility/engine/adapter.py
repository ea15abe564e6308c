"""Abstract adapter contract shared by the in-process engine and remote clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np

from .circuit import Gate
from .config import SimulationConfig
from .metrics import SimulationMetrics
from .state import SimulationState, StepResult


class SimulationAdapter(ABC):
    """Operations every simulation backend exposes.

    Implementations raise the exceptions from :mod:`.errors`; callers can
    swap an in-process engine for a remote one without changing code.
    """

    @abstractmethod
    def initialize(self, config: SimulationConfig) -> SimulationState:
        ...

    @abstractmethod
    def load_packet(self, image: bytes | str | Path | np.ndarray) -> SimulationState:
        ...

    @abstractmethod
    def build_circuit(self, gates: list[Gate | dict]) -> SimulationState:
        ...

    @abstractmethod
    def execute_step(self) -> StepResult:
        ...

    @abstractmethod
    def execute_all(self) -> list[StepResult]:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def reset(self) -> SimulationState:
        ...

    @abstractmethod
    def get_state(self) -> SimulationState:
        ...

    @abstractmethod
    def get_metrics(self) -> SimulationMetrics:
        ...
