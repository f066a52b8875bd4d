"""
mood.py – Map face-mesh geometry to a discrete mood label.

A fixed-threshold heuristic, auditable by eye: two ratios (mouth aperture,
mean eyebrow height) checked by ordered guards.  The ranges overlap, so the
order of the checks is part of the behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from signbridge.landmarks import (
    LEFT_EYEBROW,
    LOWER_LIP,
    MIN_FACE_POINTS,
    RIGHT_EYEBROW,
    UPPER_LIP,
    as_landmark_array,
)


class MoodLabel(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    SURPRISED = "surprised"
    ANGRY = "angry"
    QUESTIONING = "questioning"


@dataclass(frozen=True)
class MoodThresholds:
    surprised_mouth: float = 0.05
    surprised_brow: float = 0.3
    happy_mouth: float = 0.03
    sad_brow: float = 0.35


DEFAULT_THRESHOLDS = MoodThresholds()


def face_ratios(face: Any) -> tuple[float, float] | None:
    """Return ``(mouth_open, eyebrow_height)`` or None without a full face mesh."""
    lm = as_landmark_array(face)
    if len(lm) < MIN_FACE_POINTS:
        return None
    mouth_open = abs(float(lm[UPPER_LIP, 1] - lm[LOWER_LIP, 1]))
    eyebrow_height = float(lm[LEFT_EYEBROW, 1] + lm[RIGHT_EYEBROW, 1]) / 2.0
    return mouth_open, eyebrow_height


def classify_mood(face: Any, thresholds: MoodThresholds = DEFAULT_THRESHOLDS) -> MoodLabel:
    """Classify *face* landmarks; anything short of 468 points is neutral."""
    ratios = face_ratios(face)
    if ratios is None:
        return MoodLabel.NEUTRAL
    mouth_open, eyebrow_height = ratios

    if mouth_open > thresholds.surprised_mouth and eyebrow_height < thresholds.surprised_brow:
        return MoodLabel.SURPRISED
    if mouth_open > thresholds.happy_mouth:
        return MoodLabel.HAPPY
    if eyebrow_height > thresholds.sad_brow:
        return MoodLabel.SAD
    return MoodLabel.NEUTRAL
