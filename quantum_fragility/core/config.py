"""Application configuration management."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path

from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.image_processor import (
    DEFAULT_MAX_BYTES, DEFAULT_MAX_DIMENSION, ImageProcessor,
)

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    """Persistent application configuration."""
    default_qubits: int = 3
    noise_level: float = 0.2
    decoherence_rate: float = 0.1
    gate_error_probability: float = 0.1
    animation_speed: float = 1.0
    max_image_bytes: int = DEFAULT_MAX_BYTES
    max_image_dimension: int = DEFAULT_MAX_DIMENSION
    bridge_port: int = 9876
    recent_images: list[str] = field(default_factory=list)
    last_directory: str = ""

    _config_dir: Path = field(
        default_factory=lambda: Path.home() / ".quantum_fragility",
        repr=False)

    @property
    def config_path(self) -> Path:
        return self._config_dir / "config.json"

    def simulation_config(self) -> SimulationConfig:
        """Defaults as a SimulationConfig, clamped into the legal ranges."""
        return SimulationConfig(
            qubit_count=self.default_qubits,
            noise_level=self.noise_level,
            decoherence_rate=self.decoherence_rate,
            gate_error_probability=self.gate_error_probability,
            animation_speed=self.animation_speed,
        ).clamped()

    def image_processor(self) -> ImageProcessor:
        return ImageProcessor(max_bytes=self.max_image_bytes,
                              max_dimension=self.max_image_dimension)

    def save(self):
        self._config_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "default_qubits": self.default_qubits,
            "noise_level": self.noise_level,
            "decoherence_rate": self.decoherence_rate,
            "gate_error_probability": self.gate_error_probability,
            "animation_speed": self.animation_speed,
            "max_image_bytes": self.max_image_bytes,
            "max_image_dimension": self.max_image_dimension,
            "bridge_port": self.bridge_port,
            "recent_images": self.recent_images[:10],
            "last_directory": self.last_directory,
        }
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

    @classmethod
    def load(cls, config_dir: Path | str | None = None) -> AppConfig:
        config = cls() if config_dir is None else cls(_config_dir=Path(config_dir))
        if config.config_path.exists():
            try:
                with open(config.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError):
                logger.warning("Ignoring unreadable config file %s", config.config_path)
                return config
            if not isinstance(data, dict):
                logger.warning("Ignoring config file %s: not a JSON object",
                               config.config_path)
                return config
            settable = {f.name for f in fields(cls) if not f.name.startswith('_')}
            for key, value in data.items():
                if key in settable:
                    config._apply(key, value)
        return config

    def add_recent_image(self, filepath: str):
        if filepath in self.recent_images:
            self.recent_images.remove(filepath)
        self.recent_images.insert(0, filepath)
        self.recent_images = self.recent_images[:10]

    def _apply(self, key: str, value):
        """Set ``key`` converted to the type of its default; skip bad values."""
        current = getattr(self, key)
        try:
            if isinstance(value, bool):
                raise TypeError("booleans are not accepted")
            if isinstance(current, list):
                if not isinstance(value, list):
                    raise TypeError("expected a list")
                value = [str(v) for v in value]
            elif isinstance(current, int):
                number = float(value)
                if not number.is_integer():
                    raise ValueError("expected a whole number")
                value = int(number)
            elif isinstance(current, float):
                value = float(value)
            elif not isinstance(value, str):
                raise TypeError("expected a string")
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring config value %s=%r: %s", key, value, e)
            return
        setattr(self, key, value)
