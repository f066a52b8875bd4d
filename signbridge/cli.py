"""
cli.py – SignBridge replay runner (`signbridge` console script, `main.py`).

Pipeline:
  Landmark frames  ──►  TicFilter  ──┬──►  Mood heuristic          ──►  stdout
                                     └──►  Features ─► 30-frame window ─► LSTM ─► stdout

Landmark frames come from a JSON-lines file (one frame per line) or from a
deterministic synthetic stream; camera capture lives outside this package.

Frame line format
-----------------
    {"t": 1234.0,
     "hands": [{"label": "Right", "landmarks": [[x, y, z], ...]}],
     "pose": [[x, y, z], ...],
     "face": [[x, y, z], ...]}

Usage
-----
    python main.py --dummy 90                      # synthetic stream, demo weights
    python main.py --frames session.jsonl          # replay recorded landmarks
    python main.py --frames s.jsonl --lstm models/lstm.pt --tics head_nod eye_blink_rapid
    python main.py --dummy 120 --async             # classify on a worker thread
"""

from __future__ import annotations

import argparse
import json
import logging
import pickle
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Iterator

import numpy as np

from signbridge.config import PipelineConfig
from signbridge.landmarks import MIN_FACE_POINTS, NUM_HAND_JOINTS
from signbridge.pipeline import LandmarkFrame, SignPipeline, TranslationRecord
from signbridge.session import SessionContext, UserProfile
from signbridge.sign_classifier import (
    LSTMClassifier,
    SequenceModel,
    TorchSequenceModel,
    load_sequence_model,
)

FRAME_INTERVAL_MS = 1000.0 / 30.0
NUM_POSE_JOINTS = 33


# ── Frame sources ────────────────────────────────────────────────────────────


def read_jsonl_frames(path: Path) -> Iterator[LandmarkFrame]:
    """Yield one :class:`LandmarkFrame` per non-empty line of *path*."""
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as exc:
                print(f"[SignBridge] Skipping line {lineno}: {exc}", file=sys.stderr)
                continue
            if not isinstance(data, dict):
                print(f"[SignBridge] Skipping line {lineno}: expected a JSON object, "
                      f"got {type(data).__name__}", file=sys.stderr)
                continue
            hands = data.get("hands") or []
            yield LandmarkFrame.from_detections(
                hand_sets=[h.get("landmarks") for h in hands],
                handedness=[h.get("label", "") for h in hands],
                pose=data.get("pose"),
                face=data.get("face"),
                timestamp_ms=data.get("t"),
            )


def dummy_frames(n: int, seed: int = 42) -> Iterator[LandmarkFrame]:
    """Deterministic synthetic frames: two drifting hands, pose and face."""
    rng = np.random.RandomState(seed)
    right = np.clip(0.35 + 0.08 * rng.randn(NUM_HAND_JOINTS, 3), 0.0, 1.0)
    left = np.clip(0.65 + 0.08 * rng.randn(NUM_HAND_JOINTS, 3), 0.0, 1.0)
    pose = np.clip(0.5 + 0.15 * rng.randn(NUM_POSE_JOINTS, 3), 0.0, 1.0)
    face = np.clip(0.5 + 0.05 * rng.randn(MIN_FACE_POINTS, 3), 0.0, 1.0)

    for i in range(n):
        drift = 0.01 * np.sin(i / 5.0)
        yield LandmarkFrame(
            hands={"right": (right + drift).astype(np.float32),
                   "left": (left - drift).astype(np.float32)},
            pose=pose.astype(np.float32),
            face=face.astype(np.float32),
            timestamp_ms=i * FRAME_INTERVAL_MS,
        )


# ── Setup ────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="SignBridge – sign recognition with tic filtering")
    src = p.add_mutually_exclusive_group()
    src.add_argument("--frames", type=Path, default=None, help="JSON-lines landmark file")
    src.add_argument("--dummy", type=int, default=None, metavar="N",
                     help="Generate N synthetic frames")
    p.add_argument("--lstm", type=str, default=None, help="Path to LSTM checkpoint")
    p.add_argument("--no-model", action="store_true",
                   help="Run without a classifier (features and mood only)")
    p.add_argument("--device", type=str, default=None, help="Torch device (cpu / cuda)")
    p.add_argument("--user", type=str, default="local", help="User id for the session")
    p.add_argument("--tics", nargs="*", default=[], help="Registered tic identifiers")
    p.add_argument("--threshold", type=float, default=None,
                   help="Confidence threshold (default 0.7)")
    p.add_argument("--async", dest="use_async", action="store_true",
                   help="Run recognition on a worker thread")
    p.add_argument("--records", type=Path, default=None,
                   help="Append recognised signs as JSON lines to this file")
    p.add_argument("--log-level", type=str, default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if args.threshold is not None:
        config = replace(config, confidence_threshold=args.threshold)
    if args.lstm is not None:
        config = replace(config, checkpoint=args.lstm)
    if args.device is not None:
        config = replace(config, device=args.device)
    return config


def build_model(config: PipelineConfig, disabled: bool) -> SequenceModel | None:
    """Load the checkpoint, fall back to untrained demo weights, or None."""
    if disabled:
        return None
    if config.checkpoint:
        try:
            return load_sequence_model(config.checkpoint, device=config.device)
        except (OSError, RuntimeError, EOFError, pickle.UnpicklingError) as exc:
            print(f"[SignBridge] Could not load model ({exc}); recognition disabled",
                  file=sys.stderr)
            return None
    print("[SignBridge] No checkpoint given – using untrained demo weights")
    return TorchSequenceModel(LSTMClassifier(), device=config.device)


# ── Main loop ────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        print(f"[SignBridge] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    if args.frames is not None:
        if not args.frames.exists():
            print(f"[SignBridge] Cannot open {args.frames}", file=sys.stderr)
            return 1
        frames = read_jsonl_frames(args.frames)
    else:
        frames = dummy_frames(args.dummy if args.dummy is not None else 90)

    records_fh = None

    def on_recognition(ctx: SessionContext, record: TranslationRecord) -> None:
        print(f"  >> SIGN: {record.output_data} ({record.confidence:.2f})")
        if records_fh is not None:
            records_fh.write(json.dumps(record.to_dict()) + "\n")

    model = build_model(config, args.no_model)
    executor = ThreadPoolExecutor(max_workers=1) if args.use_async else None
    pipeline = SignPipeline(
        config=config,
        model=model,
        executor=executor,
        on_recognition=on_recognition,
    )
    ctx = pipeline.session(UserProfile.create(args.user, tics=args.tics))

    last_mood = None
    n_frames = 0
    try:
        if args.records is not None:
            records_fh = args.records.open("a", encoding="utf-8")
        pipeline.start(ctx)

        print(f"[SignBridge] User           : {ctx.user_id}")
        print(f"[SignBridge] Tics filtered  : {', '.join(sorted(ctx.tic_profile)) or 'none'}")
        print(f"[SignBridge] Recognition    : {'async' if executor else 'inline'}\n")

        for frame in frames:
            result = pipeline.process_frame(ctx, frame)
            if result is None:
                break
            n_frames += 1
            if result.mood != last_mood:
                last_mood = result.mood
                print(f"  mood: {last_mood.value}  (frame {result.seq})")
    except KeyboardInterrupt:
        print("\n[SignBridge] Interrupted.")
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
        pipeline.stop(ctx)
        if records_fh is not None:
            records_fh.close()

    print(f"\n[SignBridge] Frames processed: {n_frames}")
    print(f"[SignBridge] Transcript      : {ctx.text or '(nothing recognised)'}")
    return 0
