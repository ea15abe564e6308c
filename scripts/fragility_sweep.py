"""Noise level sweep -- measure packet degradation and metrics vs noise.

Usage:
    python scripts/fragility_sweep.py --circuit bell --seed 42
    python scripts/fragility_sweep.py --circuit ghz3 --min-noise 0.0 --max-noise 1.0 --output results.json --plot sweep.png
"""

from __future__ import annotations

import argparse
import json
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import numpy as np

from quantum_fragility.core.experiment import SeedManager
from quantum_fragility.engine.config import SimulationConfig
from quantum_fragility.engine.image_processor import gradient_image
from quantum_fragility.engine.simulator import SimulationEngine


# ---- Predefined circuits --------------------------------------------------

CIRCUITS = {
    "bell": [
        {"type": "hadamard", "targets": [0]},
        {"type": "cnot", "targets": [0, 1]},
        {"type": "measure", "targets": [0]},
    ],
    "ghz3": [
        {"type": "hadamard", "targets": [0]},
        {"type": "cnot", "targets": [0, 1]},
        {"type": "cnot", "targets": [0, 2]},
        {"type": "phase", "targets": [2]},
    ],
    "idle": [{"type": "identity", "targets": [i % 3]} for i in range(6)],
}


def run_sweep(
    gates: list[dict],
    noise_levels: np.ndarray,
    n_trials: int,
    seed: int,
    decoherence_rate: float,
    image_size: int,
) -> list[dict]:
    seeds = SeedManager(seed)
    image = gradient_image(image_size, image_size)
    results = []

    for level in noise_levels:
        deg_acc = 0.0
        coh_acc = 0.0
        ent_acc = 0.0
        fid_acc = 0.0

        config = SimulationConfig(
            qubit_count=3,
            noise_level=float(level),
            decoherence_rate=decoherence_rate,
        )
        for trial in range(n_trials):
            engine = SimulationEngine(seed=seeds.child_seed())
            engine.initialize(config)
            engine.load_packet(image)
            engine.build_circuit(gates)
            engine.execute_all()

            state = engine.get_state()
            metrics = engine.get_metrics()
            deg_acc += state.packet.degradation_level
            coh_acc += metrics.coherence
            ent_acc += metrics.entanglement
            fid_acc += metrics.gate_fidelity

        results.append({
            "noise_level": float(level),
            "mean_degradation": deg_acc / n_trials,
            "mean_coherence": coh_acc / n_trials,
            "mean_entanglement": ent_acc / n_trials,
            "mean_gate_fidelity": fid_acc / n_trials,
        })

    return results


def plot_sweep(results: list[dict], title: str, path: str) -> None:
    from matplotlib.backends.backend_agg import FigureCanvasAgg
    from matplotlib.figure import Figure

    levels = [r["noise_level"] for r in results]
    figure = Figure(figsize=(6, 3.5), dpi=100)
    canvas = FigureCanvasAgg(figure)
    ax = figure.add_subplot(111)

    ax.plot(levels, [r["mean_degradation"] for r in results],
            color="#E74C3C", linewidth=2, marker="o", markersize=4,
            label="Degradation")
    ax.plot(levels, [r["mean_coherence"] for r in results],
            color="#4A90D9", linewidth=2, marker="s", markersize=4,
            label="Coherence")
    ax.plot(levels, [r["mean_gate_fidelity"] for r in results],
            color="#2ECC71", linewidth=2, marker="^", markersize=4,
            label="Gate fidelity")

    ax.set_xlim(levels[0], levels[-1])
    ax.set_ylim(0, 1.05)
    ax.set_xlabel("Noise Level")
    ax.set_ylabel("Mean value")
    ax.set_title(title)
    ax.legend(loc="best", fontsize=8)
    ax.grid(True, alpha=0.3)

    figure.tight_layout()
    canvas.print_png(path)


def main():
    parser = argparse.ArgumentParser(description="Noise level sweep experiment")
    parser.add_argument("--circuit", choices=list(CIRCUITS.keys()), default="bell")
    parser.add_argument("--min-noise", type=float, default=0.0)
    parser.add_argument("--max-noise", type=float, default=1.0)
    parser.add_argument("--steps", type=int, default=11)
    parser.add_argument("--trials", type=int, default=20)
    parser.add_argument("--decoherence", type=float, default=0.1)
    parser.add_argument("--size", type=int, default=64, help="Test image edge in pixels")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--output", type=str, default=None)
    parser.add_argument("--plot", type=str, default=None, help="Write a PNG chart")
    args = parser.parse_args()

    gates = CIRCUITS[args.circuit]
    levels = np.linspace(args.min_noise, args.max_noise, args.steps)

    print(f"Running fragility sweep: circuit={args.circuit}, "
          f"noise=[{args.min_noise:.3f}, {args.max_noise:.3f}], "
          f"steps={args.steps}, trials={args.trials}, seed={args.seed}")

    results = run_sweep(gates, levels, args.trials, args.seed,
                        args.decoherence, args.size)

    output = {
        "experiment": "fragility_sweep",
        "circuit": args.circuit,
        "decoherence_rate": args.decoherence,
        "n_trials": args.trials,
        "seed": args.seed,
        "results": results,
    }

    if args.output:
        with open(args.output, "w") as f:
            json.dump(output, f, indent=2)
        print(f"Results saved to {args.output}")
    else:
        print(json.dumps(output, indent=2))

    if args.plot:
        plot_sweep(results, f"Fragility sweep ({args.circuit})", args.plot)
        print(f"Plot saved to {args.plot}")


if __name__ == "__main__":
    main()
