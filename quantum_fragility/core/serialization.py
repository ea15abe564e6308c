"""JSON save/load for fragility circuits."""

from __future__ import annotations

import json
from pathlib import Path

from quantum_fragility.engine.circuit import Circuit
from quantum_fragility.engine.errors import InvalidCircuit


class CircuitSerializer:
    """JSON save/load for circuits."""

    FILE_VERSION = "1.0"
    FILE_EXTENSION = ".qfrag"

    @staticmethod
    def save(circuit: Circuit, filepath: Path | str):
        filepath = Path(filepath)
        data = circuit.to_dict()
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    @staticmethod
    def load(filepath: Path | str) -> Circuit:
        filepath = Path(filepath)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidCircuit(f"{filepath} is not valid JSON: {e}") from e
        if not isinstance(data, dict) or "gates" not in data:
            raise InvalidCircuit(f"{filepath} has no 'gates' list")
        version = data.get("version", CircuitSerializer.FILE_VERSION)
        if version != CircuitSerializer.FILE_VERSION:
            raise InvalidCircuit(f"{filepath} has unsupported version {version!r}")
        return Circuit.from_dict(data)

    @staticmethod
    def parse_spec(text: str) -> Circuit:
        """Parse the compact command-line form, e.g. ``"H:0, CNOT:0-1, P:1, M:0"``.

        Each item is ``TYPE:QUBITS`` where qubits are joined by ``-``; for a
        CNOT the first index is the control.
        """
        gates = []
        for item in (part.strip() for part in text.split(",")):
            if not item:
                continue
            name, _, qubits = item.partition(":")
            if not qubits:
                raise InvalidCircuit(f"Gate {item!r} has no qubits; expected TYPE:QUBITS")
            try:
                targets = [int(q) for q in qubits.split("-")]
            except ValueError as e:
                raise InvalidCircuit(f"Bad qubit list in {item!r}") from e
            gates.append({"type": name, "targets": targets})
        return Circuit.from_gates(gates)
