"""Image packet creation and visual corruption effects.

Images are held as RGBA ``uint8`` NumPy arrays of shape (H, W, 4). Pillow
handles decoding and the resampling-based effects (blur, pixelate); the
per-pixel effects (color shift, fade) are plain array arithmetic. Every
effect returns a new array and never writes into its input.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

import numpy as np
from PIL import Image, ImageFilter, UnidentifiedImageError

from .errors import InvalidImageFormat
from .qubit import clamp

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
MAX_BLUR_RADIUS = 8.0
MAX_PIXEL_BLOCK = 16
SUPPORTED_FORMATS = ("PNG", "JPEG", "WEBP", "GIF")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_DIMENSION = 4096


class CorruptionType(Enum):
    BLUR = "blur"
    PIXELATE = "pixelate"
    COLOR_SHIFT = "colorShift"
    FADE = "fade"


@dataclass(frozen=True)
class Corruption:
    """A requested visual effect and its strength in [0, 1]."""
    type: CorruptionType
    intensity: float

    def to_dict(self) -> dict:
        return {"type": self.type.value, "intensity": self.intensity}


@dataclass(frozen=True)
class CorruptionRecord:
    """History entry: which effect hit the packet, and why."""
    type: CorruptionType
    intensity: float
    source: str          # "gate:<id>", "decoherence", "noise"
    elapsed_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "intensity": self.intensity,
            "source": self.source,
            "elapsed_time": self.elapsed_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CorruptionRecord:
        return cls(
            type=CorruptionType(data["type"]),
            intensity=float(data["intensity"]),
            source=data.get("source", ""),
            elapsed_time=float(data.get("elapsed_time", 0.0)),
        )


@dataclass
class QuantumPacket:
    """The visual payload standing in for quantum information.

    ``source`` keeps the pristine decoded image so a reset can hand back a
    freshly loaded packet without asking for the upload again.
    """
    image: np.ndarray
    source: np.ndarray
    degradation_level: float = 0.0
    history: list[CorruptionRecord] = field(default_factory=list)
    format: str = "RAW"

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    def copy(self) -> QuantumPacket:
        return replace(self, image=self.image.copy(), history=list(self.history))

    def fresh(self) -> QuantumPacket:
        """The packet as it was right after loading."""
        return QuantumPacket(image=self.source.copy(), source=self.source,
                             format=self.format)

    def to_dict(self, include_image: bool = False) -> dict:
        d = {
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "degradation_level": self.degradation_level,
            "history": [r.to_dict() for r in self.history],
        }
        if include_image:
            d["image"] = encode_image(self.image)
            d["source"] = encode_image(self.source)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> QuantumPacket:
        """Rebuild a packet. Without image data a blank raster of the right size is used."""
        if "image" in data:
            image = decode_image(data["image"])
            source = decode_image(data.get("source", data["image"]))
        else:
            image = np.zeros((data["height"], data["width"], 4), dtype=np.uint8)
            source = image.copy()
        return cls(
            image=image,
            source=source,
            degradation_level=float(data.get("degradation_level", 0.0)),
            history=[CorruptionRecord.from_dict(r) for r in data.get("history", [])],
            format=data.get("format", "RAW"),
        )


def encode_image(image: np.ndarray) -> str:
    """PNG + base64 text form, used on the bridge wire."""
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def decode_image(text: str) -> np.ndarray:
    with Image.open(io.BytesIO(base64.b64decode(text))) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def gradient_image(width: int, height: int) -> np.ndarray:
    """Synthetic RGBA test raster: red/green gradients over a blue checkerboard."""
    ys, xs = np.mgrid[0:height, 0:width]
    image = np.empty((height, width, 4), dtype=np.uint8)
    image[..., 0] = (xs * 255 // max(width - 1, 1)).astype(np.uint8)
    image[..., 1] = (ys * 255 // max(height - 1, 1)).astype(np.uint8)
    image[..., 2] = np.where((xs // 8 + ys // 8) % 2 == 0, 200, 40).astype(np.uint8)
    image[..., 3] = 255
    return image


class ImageProcessor:
    """Turns uploads into packets and applies corruption effects."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES,
                 max_dimension: int = DEFAULT_MAX_DIMENSION):
        self.max_bytes = max_bytes
        self.max_dimension = max_dimension

    # ---- Packet creation --------------------------------------------------

    def create_packet(self, image: bytes | str | Path | np.ndarray) -> QuantumPacket:
        """Decode an upload into a fresh packet.

        Accepts encoded image bytes, a path to an image file, or an
        (H, W, 3|4) uint8 array.

        Raises:
            InvalidImageFormat: undecodable input, unsupported format, or
                size/dimension bounds exceeded.
        """
        if isinstance(image, np.ndarray):
            rgba, fmt = self._from_array(image), "RAW"
        else:
            if isinstance(image, (str, Path)):
                path = Path(image)
                try:
                    data = path.read_bytes()
                except OSError as e:
                    raise InvalidImageFormat(f"Cannot read image file {path}: {e}") from e
            elif isinstance(image, (bytes, bytearray, memoryview)):
                data = bytes(image)
            else:
                raise InvalidImageFormat(
                    f"Unsupported image input type: {type(image).__name__}")
            rgba, fmt = self._decode(data)

        h, w = rgba.shape[:2]
        if h == 0 or w == 0:
            raise InvalidImageFormat("Image has no pixels")
        if max(h, w) > self.max_dimension:
            raise InvalidImageFormat(
                f"Image is {w}x{h}, larger than the {self.max_dimension}px limit")

        logger.info("Created packet from %s image (%dx%d)", fmt, w, h)
        return QuantumPacket(image=rgba.copy(), source=rgba, format=fmt)

    def _decode(self, data: bytes) -> tuple[np.ndarray, str]:
        if not data:
            raise InvalidImageFormat("Image upload is empty")
        if len(data) > self.max_bytes:
            raise InvalidImageFormat(
                f"Image is {len(data)} bytes, larger than the {self.max_bytes} byte limit")
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = img.format or "UNKNOWN"
                if fmt not in SUPPORTED_FORMATS:
                    raise InvalidImageFormat(f"Unsupported image format: {fmt}")
                if max(img.size) > self.max_dimension:
                    raise InvalidImageFormat(
                        f"Image is {img.size[0]}x{img.size[1]}, larger than the "
                        f"{self.max_dimension}px limit")
                rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
        except InvalidImageFormat:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError,
                OSError, SyntaxError, ValueError) as e:
            raise InvalidImageFormat(f"Cannot decode image: {e}") from e
        return rgba, fmt

    @staticmethod
    def _from_array(array: np.ndarray) -> np.ndarray:
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise InvalidImageFormat(
                f"Expected an (H, W, 3) or (H, W, 4) array, got shape {array.shape}")
        if array.dtype != np.uint8:
            raise InvalidImageFormat(f"Expected uint8 pixels, got {array.dtype}")
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            return np.concatenate([array, alpha], axis=2)
        return array.copy()

    # ---- Corruption -------------------------------------------------------

    def apply_corruption(self, image: np.ndarray, corruption: Corruption,
                         rng: np.random.Generator | None = None) -> np.ndarray:
        """Return a corrupted copy of ``image``.

        Raises:
            ValueError: unknown corruption type (a programming error).
        """
        intensity = clamp(corruption.intensity)
        if intensity == 0.0:
            return image.copy()

        if corruption.type == CorruptionType.BLUR:
            return self._blur(image, intensity)
        if corruption.type == CorruptionType.PIXELATE:
            return self._pixelate(image, intensity)
        if corruption.type == CorruptionType.COLOR_SHIFT:
            return self._color_shift(image, intensity, rng or np.random.default_rng())
        if corruption.type == CorruptionType.FADE:
            return self._fade(image, intensity)
        raise ValueError(f"Unknown corruption type: {corruption.type!r}")

    def corrupt_packet(self, packet: QuantumPacket, corruption: Corruption,
                       source: str, degradation: float,
                       rng: np.random.Generator | None = None,
                       elapsed_time: float = 0.0) -> QuantumPacket:
        """New packet with the effect applied, history appended and degradation raised.

        ``degradation`` is added to ``degradation_level`` (clamped to 1); the
        level never goes down here.
        """
        image = self.apply_corruption(packet.image, corruption, rng)
        history = list(packet.history)
        history.append(CorruptionRecord(corruption.type, corruption.intensity,
                                        source, elapsed_time))
        return replace(
            packet,
            image=image,
            degradation_level=clamp(packet.degradation_level + max(0.0, degradation)),
            history=history[-HISTORY_LIMIT:],
        )

    @staticmethod
    def _blur(image: np.ndarray, intensity: float) -> np.ndarray:
        radius = intensity * MAX_BLUR_RADIUS
        blurred = Image.fromarray(image).filter(ImageFilter.GaussianBlur(radius))
        return np.array(blurred, dtype=np.uint8)

    @staticmethod
    def _pixelate(image: np.ndarray, intensity: float) -> np.ndarray:
        block = int(round(intensity * MAX_PIXEL_BLOCK))
        if block <= 1:
            return image.copy()
        h, w = image.shape[:2]
        small_size = (max(1, w // block), max(1, h // block))
        img = Image.fromarray(image)
        small = img.resize(small_size, Image.Resampling.BOX)
        return np.array(small.resize((w, h), Image.Resampling.NEAREST), dtype=np.uint8)

    @staticmethod
    def _color_shift(image: np.ndarray, intensity: float,
                     rng: np.random.Generator) -> np.ndarray:
        offsets = rng.uniform(-intensity, intensity, size=3) * 255.0
        out = image.astype(np.float64)
        out[..., :3] += offsets
        return np.clip(np.rint(out), 0, 255).astype(np.uint8)

    @staticmethod
    def _fade(image: np.ndarray, intensity: float) -> np.ndarray:
        out = image.copy()
        out[..., 3] = np.rint(image[..., 3] * (1.0 - intensity)).astype(np.uint8)
        return out
