from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

import numpy as np
from dotenv import load_dotenv

from .config import TrackerConfig, load_tracker_config
from .model import JointState
from .session import TrackingSession
from .synthetic import SyntheticScene, default_objects


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Track synthetic boxes in rendered depth frames with the multi-object particle filter."
    )
    parser.add_argument("--objects", type=int, default=2, help="number of synthetic objects (1-3)")
    parser.add_argument("--frames", type=int, default=10, help="frames to track after initialization")
    parser.add_argument("--fps", type=float, default=30.0, help="synthetic frame rate")
    parser.add_argument("--samples", type=int, default=0, help="particle count; 0 keeps the config value")
    parser.add_argument(
        "--candidates",
        type=int,
        default=60,
        help="initialization candidates per object",
    )
    parser.add_argument("--seed", type=int, default=7, help="rng seed for scene noise and the filter")
    parser.add_argument(
        "--full-state",
        action="store_true",
        help="initialize from full joint candidates instead of staged per-object candidates",
    )
    parser.add_argument(
        "--backend",
        type=str,
        default="",
        help="observation backend: cpu, torch, gpu or cuda; empty keeps the config value",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON tracker configuration")
    parser.add_argument(
        "--log-level",
        type=str,
        default="",
        help="logging level; defaults to RIGIDTRACK_LOG_LEVEL or WARNING",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv(Path.cwd() / ".env")
    args = _build_parser().parse_args(argv)

    level_name = (args.log_level or os.environ.get("RIGIDTRACK_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(level=level_name, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    overrides: dict[str, object] = {"seed": int(args.seed)}
    if args.samples > 0:
        overrides["sample_count"] = int(args.samples)
    if args.backend:
        overrides["observation_backend"] = args.backend
    if args.config is not None:
        config = load_tracker_config(args.config, overrides=overrides)
    else:
        config = TrackerConfig.from_mapping(overrides)

    rng = np.random.default_rng(args.seed)
    scene = SyntheticScene(objects=default_objects(args.objects))

    if args.full_state:
        per_object = [
            scene.perturbed_candidates(index, args.candidates, rng) for index in range(len(scene.objects))
        ]
        initial = [JointState(poses=tuple(column)) for column in zip(*per_object)]
    else:
        initial = [
            candidate
            for index in range(len(scene.objects))
            for candidate in scene.perturbed_candidates(index, args.candidates, rng)
        ]

    session = TrackingSession(config)
    session.start(
        scene.object_names(),
        scene.meshes(),
        scene.intrinsics,
        initial,
        scene.depth_at(0.0, rng),
        0.0,
        partial=not args.full_state,
    )

    for frame_index in range(1, args.frames + 1):
        t_s = frame_index / args.fps
        result = session.process_frame(scene.depth_at(t_s, rng), t_s)
        if not result.ok or result.state is None:
            print(f"frame {frame_index}: failed ({result.error})")
            continue
        truth = scene.state_at(t_s)
        errors = [
            float(np.linalg.norm(np.asarray(estimate.position) - np.asarray(actual.position)))
            for estimate, actual in zip(result.state.poses, truth.poses, strict=True)
        ]
        formatted = " ".join(
            f"{name}={error * 1000.0:.1f}mm" for name, error in zip(scene.object_names(), errors, strict=True)
        )
        print(f"frame {frame_index}: {formatted}")

    session.stop()


if __name__ == "__main__":
    main()
