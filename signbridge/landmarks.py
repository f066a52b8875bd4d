"""
landmarks.py – Landmark-set representation and index contracts.

Every landmark set handled by the pipeline is an ``(N, 3)`` float32 array of
normalised ``(x, y, z)`` keypoints.  Index meaning follows the MediaPipe
conventions for hands (21 points), pose (33 joints) and the face mesh
(468 points, 478 with iris refinement).

A missing set (``None`` or empty) becomes an ``(0, 3)`` array: downstream
code checks ``len()`` against the indices it needs instead of ever reading
a zero coordinate as a real point.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np

# ── Schema sizes ─────────────────────────────────────────────────────────────

NUM_HAND_JOINTS = 21
NUM_HANDS = 2
MIN_POSE_JOINTS = 25
MIN_FACE_POINTS = 468
COORDS = 3

# Hand slots in feature-vector order
HAND_SLOTS: tuple[str, str] = ("right", "left")

# ── Hand indices (MediaPipe 21-point convention) ─────────────────────────────

WRIST_IDX = 0
THUMB_TIP_IDX = 4

# (tip, pip) per finger, used for the extended / folded hand shape
FINGER_TIP_PIP: dict[str, tuple[int, int]] = {
    "thumb": (4, 3),
    "index": (8, 6),
    "middle": (12, 10),
    "ring": (16, 14),
    "pinky": (20, 18),
}

# ── Pose indices (MediaPipe pose) ────────────────────────────────────────────

POSE_NOSE = 0
POSE_LEFT_SHOULDER = 11
POSE_RIGHT_SHOULDER = 12

# Shoulders, elbows, wrists, hips – order is part of the feature contract
POSE_FEATURE_JOINTS: tuple[int, ...] = (11, 12, 13, 14, 15, 16, 23, 24)

# ── Face-mesh indices ────────────────────────────────────────────────────────

LEFT_UPPER_EYELID = 159
LEFT_LOWER_EYELID = 145
RIGHT_UPPER_EYELID = 386
RIGHT_LOWER_EYELID = 374

UPPER_LIP = 13
LOWER_LIP = 14
MOUTH_LEFT_CORNER = 61
MOUTH_RIGHT_CORNER = 291

LEFT_EYEBROW = 70
RIGHT_EYEBROW = 300


def _empty() -> np.ndarray:
    return np.zeros((0, COORDS), dtype=np.float32)


def as_landmark_array(landmarks: Any) -> np.ndarray:
    """Coerce a landmark set into an ``(N, 3)`` float32 array.

    Accepts ``None``, an existing array, a sequence of ``(x, y, z)`` tuples
    (``z`` optional) or a sequence of objects with ``.x/.y/.z`` attributes
    such as MediaPipe's ``NormalizedLandmark``.
    """
    if landmarks is None:
        return _empty()

    if isinstance(landmarks, np.ndarray):
        if landmarks.size == 0:
            return _empty()
        arr = landmarks.astype(np.float32, copy=False)
        if arr.ndim != 2 or arr.shape[1] not in (2, 3):
            raise ValueError(f"Expected (N, 2|3) landmarks, got {arr.shape}")
        if arr.shape[1] == 2:
            arr = np.hstack([arr, np.zeros((arr.shape[0], 1), dtype=np.float32)])
        return arr

    # MediaPipe result containers wrap the list in ``.landmark``
    landmarks = getattr(landmarks, "landmark", landmarks)
    points = list(landmarks)
    if not points:
        return _empty()

    rows: list[tuple[float, float, float]] = []
    for p in points:
        if hasattr(p, "x"):
            rows.append((float(p.x), float(p.y), float(getattr(p, "z", 0.0))))
        else:
            xyz = tuple(float(v) for v in p)
            rows.append((xyz + (0.0,))[:COORDS] if len(xyz) == 2 else xyz[:COORDS])
    return np.asarray(rows, dtype=np.float32)


def has_indices(landmarks: np.ndarray, indices: Sequence[int]) -> bool:
    """True when every index in *indices* is present in *landmarks*."""
    return len(landmarks) > 0 and max(indices) < len(landmarks)
