"""Wire format of the simulation bridge.

One JSON object per line. A request names an adapter operation in
``action`` and carries its arguments in ``params``; the response echoes the
request ``id`` and holds either ``data`` or ``error``. Failed operations also
name the engine exception class in ``error_type`` so a client can raise the
same exception locally.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field, fields

DELIMITER = b"\n"


@dataclass
class BridgeMessage:
    type: str = "request"           # "request" | "response"
    id: str = ""                    # correlation id
    action: str = ""                # adapter operation name
    params: dict = field(default_factory=dict)
    status: str = ""                # "ok" | "error"
    data: dict = field(default_factory=dict)
    error: str = ""
    error_type: str = ""            # exception class name

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    def to_bytes(self) -> bytes:
        """Encoded line, delimiter included."""
        return self.to_json().encode("utf-8") + DELIMITER

    @classmethod
    def from_json(cls, raw: str | bytes) -> BridgeMessage:
        """Parse one line. Unknown keys are ignored.

        Raises:
            ValueError: not JSON, not UTF-8, or not a JSON object.
        """
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})

    @classmethod
    def request(cls, action: str, params: dict | None = None) -> BridgeMessage:
        return cls(id=uuid.uuid4().hex, action=action, params=params or {})

    @classmethod
    def ok_response(cls, request_id: str, data: dict | None = None) -> BridgeMessage:
        return cls(type="response", id=request_id, status="ok", data=data or {})

    @classmethod
    def error_response(cls, request_id: str, error: str,
                       error_type: str = "") -> BridgeMessage:
        return cls(type="response", id=request_id, status="error",
                   error=error, error_type=error_type)

    @classmethod
    def from_exception(cls, request_id: str, exc: BaseException) -> BridgeMessage:
        return cls.error_response(request_id, str(exc), type(exc).__name__)
