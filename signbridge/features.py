"""
features.py – Per-frame feature vector for the sequence classifier.

Layout of the ``(150,)`` vector (changing it invalidates trained weights):

    [  0: 63]  right hand, 21 joints × (x, y, z)
    [ 63:126]  left hand,  21 joints × (x, y, z)
    [126:150]  pose joints 11, 12, 13, 14, 15, 16, 23, 24 × (x, y, z)

Absent hands and joints are zero-filled so the classifier always sees the
same shape.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np

from signbridge.landmarks import (
    COORDS,
    FINGER_TIP_PIP,
    HAND_SLOTS,
    NUM_HAND_JOINTS,
    NUM_HANDS,
    POSE_FEATURE_JOINTS,
    as_landmark_array,
)

# ── Constants ────────────────────────────────────────────────────────────────

FEATURE_DIM_PER_HAND = NUM_HAND_JOINTS * COORDS                # 63
HAND_FEATURE_DIM = FEATURE_DIM_PER_HAND * NUM_HANDS            # 126
POSE_FEATURE_DIM = len(POSE_FEATURE_JOINTS) * COORDS           # 24
FEATURE_DIM = HAND_FEATURE_DIM + POSE_FEATURE_DIM              # 150


def _hand_part(hand: Any) -> np.ndarray:
    lm = as_landmark_array(hand)
    if len(lm) < NUM_HAND_JOINTS:
        return np.zeros(FEATURE_DIM_PER_HAND, dtype=np.float32)
    return lm[:NUM_HAND_JOINTS].reshape(-1)


def _pose_part(pose: Any) -> np.ndarray:
    lm = as_landmark_array(pose)
    part = np.zeros((len(POSE_FEATURE_JOINTS), COORDS), dtype=np.float32)
    for row, idx in enumerate(POSE_FEATURE_JOINTS):
        if idx < len(lm):
            part[row] = lm[idx]
    return part.reshape(-1)


def extract_features(
    hands: Mapping[str, Any] | None,
    pose: Any = None,
) -> np.ndarray:
    """Flatten both hand slots and the key pose joints into a ``(150,)`` vector.

    Parameters
    ----------
    hands : mapping
        ``{'right': landmarks | None, 'left': landmarks | None}``; missing keys
        count as absent hands.
    pose : landmarks or None
        Full pose landmark set.

    Returns
    -------
    np.ndarray
        float32 vector of length :data:`FEATURE_DIM`.
    """
    hands = hands or {}
    parts = [_hand_part(hands.get(side)) for side in HAND_SLOTS]
    parts.append(_pose_part(pose))
    return np.concatenate(parts).astype(np.float32, copy=False)


def assign_hand_slots(
    hand_sets: Sequence[Any] | None,
    handedness: Sequence[str] | None = None,
) -> dict[str, np.ndarray | None]:
    """Place detected hands into the ``right`` / ``left`` slots.

    Each hand goes to the slot named by its handedness label when that slot
    is free, otherwise to the remaining free slot.  Unlabelled hands fill
    slots in :data:`HAND_SLOTS` order.  At most two hands are kept.
    """
    result: dict[str, np.ndarray | None] = {side: None for side in HAND_SLOTS}
    if not hand_sets:
        return result
    labels = list(handedness or [])

    for i, hand in enumerate(hand_sets):
        lm = as_landmark_array(hand)
        if len(lm) == 0:
            continue
        label = labels[i].strip().lower() if i < len(labels) and labels[i] else ""
        if label in result and result[label] is None:
            result[label] = lm
            continue
        free = [side for side in HAND_SLOTS if result[side] is None]
        if not free:
            break
        result[free[0]] = lm
    return result


def hand_shape(hand: Any) -> dict[str, str] | None:
    """Per-finger ``'extended'`` / ``'folded'`` from tip-above-PIP checks.

    Image y grows downward, so an extended finger has its tip above (smaller
    y than) its PIP joint.
    """
    lm = as_landmark_array(hand)
    if len(lm) < NUM_HAND_JOINTS:
        return None
    return {
        finger: "extended" if lm[tip, 1] < lm[pip, 1] else "folded"
        for finger, (tip, pip) in FINGER_TIP_PIP.items()
    }
