"""Quantum Fragility Simulator - command-line entry point.

Runs a circuit over an image and prints one line per step, or serves the
engine over the TCP bridge.

Usage:
    python main.py photo.png --gates "H:0, CNOT:0-1, P:1, M:0" --seed 7
    python main.py photo.png --circuit bell.qfrag --record run.json --output out.png
    python main.py --serve --port 9876
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys

from PIL import Image
from PyQt6.QtCore import QCoreApplication, QTimer

from quantum_fragility.bridge.server import BridgeCommandHandler, BridgeServer
from quantum_fragility.controller.simulation_controller import SimulationController
from quantum_fragility.core.config import AppConfig
from quantum_fragility.core.experiment import RunRecord
from quantum_fragility.core.serialization import CircuitSerializer
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.errors import RecoverableError
from quantum_fragility.engine.simulator import SimulationEngine
from quantum_fragility.engine.state import StepResult

logger = logging.getLogger("quantum_fragility")

DEFAULT_GATES = "H:0, CNOT:0-1, P:1, M:0"


def _build_parser(config: AppConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watch an image degrade as a quantum circuit runs over it.")
    parser.add_argument("image", nargs="?", help="PNG, JPEG, WEBP or GIF file")
    parser.add_argument("--gates", default=None,
                        help=f"Compact circuit, e.g. \"{DEFAULT_GATES}\"")
    parser.add_argument("--circuit", default=None, help="Load a .qfrag circuit file")
    parser.add_argument("--save-circuit", default=None,
                        help="Write the circuit to a .qfrag file")
    parser.add_argument("--qubits", type=int, default=config.default_qubits)
    parser.add_argument("--noise", type=float, default=config.noise_level)
    parser.add_argument("--decoherence", type=float, default=config.decoherence_rate)
    parser.add_argument("--gate-error", type=float, default=config.gate_error_probability)
    parser.add_argument("--speed", type=float, default=config.animation_speed,
                        help="Animation speed multiplier (step pacing)")
    parser.add_argument("--fast", action="store_true",
                        help="Do not pause between steps")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--record", default=None, help="Write a JSON run record")
    parser.add_argument("--output", default=None, help="Save the final packet image")
    parser.add_argument("--serve", action="store_true",
                        help="Serve the engine over the TCP bridge")
    parser.add_argument("--port", type=int, default=config.bridge_port)
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def _print_step(result: StepResult):
    state = result.state
    total = state.circuit.gate_count() if state.circuit else 0
    event = result.event.type.value if result.event else "-"
    m = result.metrics
    print(f"[{state.current_gate_index:>3}/{total}] {event:<28s} "
          f"coherence={m.coherence:.3f}  entanglement={m.entanglement:.3f}  "
          f"fidelity={m.gate_fidelity:.3f}  "
          f"degradation={state.packet.degradation_level:.3f}")


def serve(app: QCoreApplication, engine: SimulationEngine, port: int) -> int:
    server = BridgeServer(BridgeCommandHandler(engine), port)
    server.start()
    print(f"Bridge serving on 127.0.0.1:{port} (Ctrl+C to stop)")

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Give the interpreter a chance to handle SIGINT while Qt runs.
    keepalive = QTimer()
    keepalive.timeout.connect(lambda: None)
    keepalive.start(200)

    code = app.exec()
    server.stop()
    return code


def run(app: QCoreApplication, engine: SimulationEngine, args,
        config: SimulationConfig) -> int:
    if args.circuit:
        circuit = CircuitSerializer.load(args.circuit)
    else:
        circuit = CircuitSerializer.parse_spec(args.gates or DEFAULT_GATES)
    if args.save_circuit:
        CircuitSerializer.save(circuit, args.save_circuit)

    controller = SimulationController(engine)
    if args.fast:
        controller.set_step_delay(0)

    results: list[StepResult] = []
    errors: list[str] = []
    controller.step_completed.connect(results.append)
    controller.step_completed.connect(_print_step)
    controller.error_occurred.connect(errors.append)
    controller.run_finished.connect(lambda _state: app.quit())

    ok = (controller.configure(config)
          and controller.load_image(args.image)
          and controller.set_circuit(circuit))
    if not ok:
        print(f"Error: {errors[-1]}", file=sys.stderr)
        return 1

    # A fault or rejected start ends the event loop too.
    controller.error_occurred.connect(lambda _msg: app.quit())
    QTimer.singleShot(0, controller.start)
    app.exec()

    if errors:
        print(f"Error: {errors[-1]}", file=sys.stderr)
        return 1

    final = engine.get_state()
    print(f"Final degradation: {final.packet.degradation_level:.3f} "
          f"after {final.current_gate_index} gates "
          f"({len(final.packet.history)} corruption passes)")

    if args.output:
        Image.fromarray(final.packet.image).save(args.output)
        print(f"Final image written to {args.output}")

    if args.record:
        record = RunRecord.from_results(
            config, circuit, results, seed=args.seed,
            metadata={"image": args.image})
        record.save(args.record)
        print(f"Run record written to {args.record}")
    return 0


def main(argv: list[str] | None = None) -> int:
    app_config = AppConfig.load()
    args = _build_parser(app_config).parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("Quantum Fragility Simulator")
    app.setApplicationVersion("1.0.0")

    engine = SimulationEngine(seed=args.seed, processor=app_config.image_processor())
    if args.serve:
        return serve(app, engine, args.port)

    if not args.image:
        print("Error: an image path is required unless --serve is given",
              file=sys.stderr)
        return 2

    config = SimulationConfig(
        qubit_count=args.qubits,
        noise_level=args.noise,
        decoherence_rate=args.decoherence,
        gate_error_probability=args.gate_error,
        animation_speed=args.speed,
    )
    try:
        code = run(app, engine, args, config)
    except RecoverableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    app_config.add_recent_image(args.image)
    try:
        app_config.save()
    except OSError:
        logger.warning("Could not save application config", exc_info=True)
    return code


if __name__ == '__main__':
    sys.exit(main())
