"""
tic_filter.py – Suppress a user's registered involuntary movements.

Face and pose landmarks pass through here before the mood classifier and the
feature extractor see them.  For every tic in the user's profile a
channel-specific detector watches a short real-time history of one scalar
signal and, once the tic pattern is confirmed, substitutes a stabilised value
for the affected landmarks.  Output shape always equals input shape.

Two detector families:

* **Event counting** (``eye_blink_rapid``, ``mouth_twitch``)
    Record an event whenever the channel crosses its trigger level, prune to
    the window, engage when the in-window count exceeds the rule's threshold.
    The mouth channel counts excursions away from its resting width rather
    than deviated frames, and adopts a width held longer than the window as
    the new rest.

* **Oscillation** (``head_nod``, ``shoulder_shrug``)
    Record every sample, engage when the window's samples reverse direction
    at least ``oscillation_reversals`` times (see :func:`is_oscillating`).

All mutable history lives in a :class:`TicState` that the caller owns (one
per user session); :class:`TicFilter` itself only holds configuration.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

import numpy as np

from signbridge.config import OSCILLATION_REVERSALS, PipelineConfig, TicRule, default_tic_rules
from signbridge.landmarks import (
    LEFT_LOWER_EYELID,
    LEFT_UPPER_EYELID,
    MOUTH_LEFT_CORNER,
    MOUTH_RIGHT_CORNER,
    POSE_LEFT_SHOULDER,
    POSE_NOSE,
    POSE_RIGHT_SHOULDER,
    RIGHT_LOWER_EYELID,
    RIGHT_UPPER_EYELID,
    as_landmark_array,
    has_indices,
)

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

MIN_OSCILLATION_SAMPLES = 4
MAX_EVENTS = 256  # hard cap per channel, independent of the time window

DEFAULT_OPEN_APERTURE = 0.025  # typical upper/lower lid gap with eyes open
_REFERENCE_ALPHA = 0.2         # EMA rate for the learned open-eye / mouth references

_EYE_PAIRS: tuple[tuple[int, int], ...] = (
    (LEFT_UPPER_EYELID, LEFT_LOWER_EYELID),
    (RIGHT_UPPER_EYELID, RIGHT_LOWER_EYELID),
)

Y = 1


class TicKind(str, Enum):
    EYE_BLINK_RAPID = "eye_blink_rapid"
    MOUTH_TWITCH = "mouth_twitch"
    HEAD_NOD = "head_nod"
    SHOULDER_SHRUG = "shoulder_shrug"


FACIAL_TICS = frozenset({TicKind.EYE_BLINK_RAPID, TicKind.MOUTH_TWITCH})
POSTURAL_TICS = frozenset({TicKind.HEAD_NOD, TicKind.SHOULDER_SHRUG})
_KNOWN_TICS = {k.value for k in TicKind}


# ── Oscillation detector ─────────────────────────────────────────────────────


def is_oscillating(
    values: Sequence[float],
    min_reversals: int = OSCILLATION_REVERSALS,
) -> bool:
    """Return True when *values* reverse direction at least *min_reversals* times.

    A reversal at sample ``i`` (``i >= 2``) is a sign change between the
    consecutive first differences ``v[i] - v[i-1]`` and ``v[i-1] - v[i-2]``.
    Flat steps (zero difference) never count.  A single voluntary motion is
    monotonic or reverses once; a repetitive tic reverses many times.
    """
    v = np.asarray(values, dtype=np.float64)
    if v.size < MIN_OSCILLATION_SAMPLES:
        return False
    d = np.diff(v)
    reversals = int(np.count_nonzero(d[1:] * d[:-1] < 0))
    return reversals >= min_reversals


# ── Per-user history ─────────────────────────────────────────────────────────


class EventHistory:
    """Time-ordered ``(value, timestamp_ms)`` samples inside a sliding window."""

    def __init__(self, window_ms: float) -> None:
        self.window_ms = window_ms
        self._events: deque[tuple[float, float]] = deque(maxlen=MAX_EVENTS)

    def __len__(self) -> int:
        return len(self._events)

    def record(self, value: float, now_ms: float) -> None:
        self._events.append((float(value), float(now_ms)))

    def prune(self, now_ms: float) -> None:
        """Drop samples that are ``window_ms`` or more older than *now_ms*."""
        while self._events and now_ms - self._events[0][1] >= self.window_ms:
            self._events.popleft()

    def values(self) -> list[float]:
        return [v for v, _ in self._events]

    def clear(self) -> None:
        self._events.clear()


@dataclass
class TicState:
    """Mutable tic-detection state for exactly one user.

    Holds one :class:`EventHistory` per tic channel plus the references the
    substitution step restores to (open-eye aperture, resting mouth width).
    """

    histories: dict[str, EventHistory] = field(default_factory=dict)
    open_eye_aperture: float | None = None
    mouth_baseline: float | None = None
    mouth_deviation_since: float | None = None

    def history(self, name: str, window_ms: float) -> EventHistory:
        hist = self.histories.get(name)
        if hist is None:
            hist = EventHistory(window_ms)
            self.histories[name] = hist
        else:
            hist.window_ms = window_ms
        return hist

    def learn_open_aperture(self, aperture: float) -> None:
        if self.open_eye_aperture is None:
            self.open_eye_aperture = aperture
        else:
            self.open_eye_aperture += _REFERENCE_ALPHA * (aperture - self.open_eye_aperture)

    def reset(self) -> None:
        self.histories.clear()
        self.open_eye_aperture = None
        self.mouth_baseline = None
        self.mouth_deviation_since = None


# ── Filter ───────────────────────────────────────────────────────────────────


class TicFilter:
    """Apply a user's tic profile to face and pose landmarks.

    Parameters
    ----------
    rules : mapping of tic name → TicRule, optional
        Per-tic window / threshold settings.  Missing entries fall back to
        :func:`signbridge.config.default_tic_rules`.
    oscillation_reversals : int
        Reversal count that marks a head / shoulder channel as oscillating.
    clock : callable, optional
        Returns the current time in milliseconds.  Defaults to a monotonic
        clock; tests inject their own timestamps through ``now_ms`` instead.
    """

    def __init__(
        self,
        rules: Mapping[str, TicRule] | None = None,
        oscillation_reversals: int = OSCILLATION_REVERSALS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.rules = default_tic_rules()
        if rules:
            self.rules.update(rules)
        self.oscillation_reversals = oscillation_reversals
        self._clock = clock or (lambda: time.monotonic() * 1000.0)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> TicFilter:
        return cls(config.tic_rules, config.oscillation_reversals)

    # ── Public API ───────────────────────────────────────────────────────

    def filter_facial_tics(
        self,
        face: Any,
        tic_profile: Iterable[str],
        state: TicState,
        now_ms: float | None = None,
    ) -> Any:
        """Return *face* with registered facial tics suppressed.

        The input object itself is returned when nothing was substituted,
        so an empty profile leaves the landmarks untouched.
        """
        tics = self._active_tics(tic_profile, FACIAL_TICS)
        if not tics:
            return face
        arr = as_landmark_array(face)
        if len(arr) == 0:
            return face

        now = self._now(now_ms)
        out = arr
        for tic in tics:
            if tic is TicKind.EYE_BLINK_RAPID:
                out = self._filter_eye_blinks(out, state, now)
            elif tic is TicKind.MOUTH_TWITCH:
                out = self._filter_mouth_twitches(out, state, now)
        return face if out is arr else out

    def filter_postural_tics(
        self,
        pose: Any,
        tic_profile: Iterable[str],
        state: TicState,
        now_ms: float | None = None,
    ) -> Any:
        """Return *pose* with registered postural tics stabilised."""
        tics = self._active_tics(tic_profile, POSTURAL_TICS)
        if not tics:
            return pose
        arr = as_landmark_array(pose)
        if len(arr) == 0:
            return pose

        now = self._now(now_ms)
        out = arr
        for tic in tics:
            if tic is TicKind.HEAD_NOD:
                out = self._filter_head_nods(out, state, now)
            elif tic is TicKind.SHOULDER_SHRUG:
                out = self._filter_shoulder_shrugs(out, state, now)
        return pose if out is arr else out

    # ── Helpers ──────────────────────────────────────────────────────────

    def _now(self, now_ms: float | None) -> float:
        return float(now_ms) if now_ms is not None else float(self._clock())

    @staticmethod
    def _active_tics(
        tic_profile: Iterable[str] | None, family: frozenset[TicKind]
    ) -> list[TicKind]:
        """Known tics of *family* in the profile, in a stable order."""
        if not tic_profile:
            return []
        active: list[TicKind] = []
        for name in sorted(set(tic_profile)):
            if name not in _KNOWN_TICS:
                logger.debug("Ignoring unknown tic identifier %r", name)
                continue
            kind = TicKind(name)
            if kind in family:
                active.append(kind)
        return active

    # ── Event-counting channels ──────────────────────────────────────────

    def _filter_eye_blinks(
        self, face: np.ndarray, state: TicState, now: float
    ) -> np.ndarray:
        if not has_indices(face, (LEFT_UPPER_EYELID, LEFT_LOWER_EYELID)):
            return face

        rule = self.rules[TicKind.EYE_BLINK_RAPID.value]
        hist = state.history(TicKind.EYE_BLINK_RAPID.value, rule.window_ms)

        aperture = abs(float(face[LEFT_UPPER_EYELID, Y] - face[LEFT_LOWER_EYELID, Y]))
        if aperture < rule.trigger:
            hist.record(1.0, now)
        else:
            state.learn_open_aperture(aperture)
        hist.prune(now)

        if len(hist) > rule.count_threshold:
            reference = state.open_eye_aperture or DEFAULT_OPEN_APERTURE
            return _reopen_eyes(face, reference)
        return face

    def _filter_mouth_twitches(
        self, face: np.ndarray, state: TicState, now: float
    ) -> np.ndarray:
        if not has_indices(face, (MOUTH_LEFT_CORNER, MOUTH_RIGHT_CORNER)):
            return face

        rule = self.rules[TicKind.MOUTH_TWITCH.value]
        hist = state.history(TicKind.MOUTH_TWITCH.value, rule.window_ms)

        width = abs(float(face[MOUTH_RIGHT_CORNER, 0] - face[MOUTH_LEFT_CORNER, 0]))
        baseline = state.mouth_baseline
        if baseline is None:
            state.mouth_baseline = width
            return face

        if abs(width - baseline) > rule.trigger:
            # one event per excursion; a width held past the window is the new rest
            if state.mouth_deviation_since is None:
                state.mouth_deviation_since = now
                hist.record(width, now)
            elif now - state.mouth_deviation_since >= rule.window_ms:
                state.mouth_baseline = width
                state.mouth_deviation_since = None
                hist.clear()
        else:
            state.mouth_deviation_since = None
            state.mouth_baseline = baseline + _REFERENCE_ALPHA * (width - baseline)
        hist.prune(now)

        if len(hist) > rule.count_threshold:
            return _restore_mouth_width(face, state.mouth_baseline)
        return face

    # ── Oscillation channels ─────────────────────────────────────────────

    def _filter_head_nods(
        self, pose: np.ndarray, state: TicState, now: float
    ) -> np.ndarray:
        if not has_indices(pose, (POSE_NOSE,)):
            return pose

        rule = self.rules[TicKind.HEAD_NOD.value]
        hist = state.history(TicKind.HEAD_NOD.value, rule.window_ms)
        hist.record(pose[POSE_NOSE, Y], now)
        hist.prune(now)

        values = hist.values()
        if is_oscillating(values, self.oscillation_reversals):
            out = pose.copy()
            out[POSE_NOSE, Y] = float(np.mean(values))
            return out
        return pose

    def _filter_shoulder_shrugs(
        self, pose: np.ndarray, state: TicState, now: float
    ) -> np.ndarray:
        shoulders = [POSE_LEFT_SHOULDER, POSE_RIGHT_SHOULDER]
        if not has_indices(pose, shoulders):
            return pose

        rule = self.rules[TicKind.SHOULDER_SHRUG.value]
        hist = state.history(TicKind.SHOULDER_SHRUG.value, rule.window_ms)
        current = float(pose[shoulders, Y].mean())
        hist.record(current, now)
        hist.prune(now)

        values = hist.values()
        if is_oscillating(values, self.oscillation_reversals):
            out = pose.copy()
            out[shoulders, Y] += float(np.mean(values)) - current
            return out
        return pose


# ── Substitution ─────────────────────────────────────────────────────────────


def _reopen_eyes(face: np.ndarray, aperture: float) -> np.ndarray:
    """Place each eyelid pair *aperture* apart around its current midline."""
    out = face.copy()
    for upper, lower in _EYE_PAIRS:
        if not has_indices(out, (upper, lower)):
            continue
        mid = 0.5 * (out[upper, Y] + out[lower, Y])
        out[upper, Y] = mid - 0.5 * aperture
        out[lower, Y] = mid + 0.5 * aperture
    return out


def _restore_mouth_width(face: np.ndarray, width: float) -> np.ndarray:
    """Re-place the mouth corners *width* apart around their midpoint."""
    out = face.copy()
    left_x = out[MOUTH_LEFT_CORNER, 0]
    right_x = out[MOUTH_RIGHT_CORNER, 0]
    mid = 0.5 * (left_x + right_x)
    sign = 1.0 if right_x >= left_x else -1.0
    out[MOUTH_LEFT_CORNER, 0] = mid - sign * 0.5 * width
    out[MOUTH_RIGHT_CORNER, 0] = mid + sign * 0.5 * width
    return out
