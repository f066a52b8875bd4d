"""
pipeline.py – Per-frame orchestration of the SignBridge core.

Pipeline (one pass per frame, per user session):

    landmarks ──► TicFilter ──┬──► classify_mood (face)          ──► mood label
                              └──► extract_features (hands+pose) ──► GestureBuffer
                                                                        │ READY
                                                                        ▼
                                          SignRecognizer ──► gate ──► TranslationRecord

Recognition runs inline by default.  With an ``executor`` the window snapshot
is classified off the frame loop; every request carries the frame's sequence
number and the session generation, and :meth:`SignPipeline.apply_result`
discards anything older than what was already applied.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from signbridge.config import PipelineConfig
from signbridge.face_identity import FaceRecognizer
from signbridge.features import assign_hand_slots, extract_features, hand_shape
from signbridge.landmarks import HAND_SLOTS
from signbridge.mood import MoodLabel, classify_mood
from signbridge.session import SessionContext, SessionRegistry, UserProfile
from signbridge.sign_classifier import SIGN_VOCABULARY, RecognitionResult, SequenceModel
from signbridge.tic_filter import TicFilter

logger = logging.getLogger(__name__)


# ── Data structures ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LandmarkFrame:
    """One frame from the landmark source.

    ``hands`` maps ``'right'`` / ``'left'`` to a 21-point set (or None).
    ``timestamp_ms`` drives the tic windows; None uses the filter's clock.
    """

    hands: Mapping[str, Any] = field(default_factory=dict)
    pose: Any = None
    face: Any = None
    timestamp_ms: float | None = None

    @classmethod
    def from_detections(
        cls,
        hand_sets: Sequence[Any] | None = None,
        handedness: Sequence[str] | None = None,
        pose: Any = None,
        face: Any = None,
        timestamp_ms: float | None = None,
    ) -> LandmarkFrame:
        return cls(assign_hand_slots(hand_sets, handedness), pose, face, timestamp_ms)


@dataclass(frozen=True)
class TranslationRecord:
    """Immutable record of a recognised sign, handed to the storage layer."""

    user_id: str
    output_data: str
    confidence: float
    input_type: str = "sign"
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FrameResult:
    seq: int
    face: Any
    pose: Any
    hands: Mapping[str, Any]
    mood: MoodLabel
    features: np.ndarray
    ready: bool
    hand_shapes: dict[str, dict[str, str] | None]
    recognition: RecognitionResult | None = None


RecognitionCallback = Callable[[SessionContext, TranslationRecord], None]


# ── Pipeline ─────────────────────────────────────────────────────────────────


class SignPipeline:
    """Drive tic filtering, mood, features and recognition for user sessions.

    Parameters
    ----------
    config : PipelineConfig, optional
        Thresholds and tic rules.
    model : SequenceModel or None
        Shared sign classifier; None until one is loaded.
    executor : concurrent.futures.Executor, optional
        When given, recognition runs asynchronously on it.
    on_recognition : callable, optional
        Called as ``on_recognition(session, record)`` for every accepted
        result, in frame order, with the session lock held.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        model: SequenceModel | None = None,
        executor: Executor | None = None,
        on_recognition: RecognitionCallback | None = None,
        labels: Sequence[str] = SIGN_VOCABULARY,
    ) -> None:
        self.config = config or PipelineConfig()
        self.tic_filter = TicFilter.from_config(self.config)
        self.registry = SessionRegistry(model, self.config, list(labels))
        self.face_recognizer = FaceRecognizer(self.config.face_match_threshold)
        self.executor = executor
        self.on_recognition = on_recognition

    # ── Sessions ─────────────────────────────────────────────────────────

    def session(self, user: UserProfile) -> SessionContext:
        """Activate *user* and return their session."""
        return self.registry.activate(user)

    def set_model(self, model: SequenceModel | None) -> None:
        self.registry.set_model(model)

    def load_users(self, users: Sequence[UserProfile]) -> None:
        """Register the users that can be identified by face."""
        self.face_recognizer.load_known_faces(users)

    def identify_user(self, face: Any) -> SessionContext | None:
        """Activate the known user matching *face*, if any."""
        match = self.face_recognizer.recognize_user(face)
        if match is None:
            return None
        logger.info(
            "Identified user %s (confidence %.2f)", match.user.user_id, match.confidence
        )
        return self.registry.activate(match.user)

    def start(self, ctx: SessionContext) -> None:
        """Begin a fresh recording: empty buffer and history, accept frames."""
        with ctx.lock:
            ctx.reset()
            ctx.active = True

    def stop(self, ctx: SessionContext) -> None:
        """Stop accepting frames and flush buffered state.

        Results still in flight for this session are discarded when they
        complete.
        """
        with ctx.lock:
            ctx.active = False
            ctx.reset()

    # ── Per-frame pass ───────────────────────────────────────────────────

    def process_frame(
        self, ctx: SessionContext, frame: LandmarkFrame
    ) -> FrameResult | None:
        """Run one frame through the pipeline; None while the session is stopped."""
        with ctx.lock:
            if not ctx.active:
                return None
            seq = ctx.take_seq()
            now = frame.timestamp_ms

            face = self.tic_filter.filter_facial_tics(
                frame.face, ctx.tic_profile, ctx.tic_state, now
            )
            pose = self.tic_filter.filter_postural_tics(
                frame.pose, ctx.tic_profile, ctx.tic_state, now
            )
            mood = classify_mood(face)
            hands = frame.hands or {}
            features = extract_features(hands, pose)
            ready = ctx.recognizer.add_frame(features)
            window = ctx.recognizer.buffer.as_array() if ready else None
            generation = ctx.generation

        result = FrameResult(
            seq=seq,
            face=face,
            pose=pose,
            hands=hands,
            mood=mood,
            features=features,
            ready=ready,
            hand_shapes={side: hand_shape(hands.get(side)) for side in HAND_SLOTS},
        )

        if window is not None:
            if self.executor is None:
                recognition = ctx.recognizer.recognize_window(window)
                if self.apply_result(ctx, seq, generation, recognition):
                    result.recognition = recognition
            else:
                self._submit(ctx, seq, generation, window)
        return result

    # ── Recognition results ──────────────────────────────────────────────

    def apply_result(
        self,
        ctx: SessionContext,
        seq: int,
        generation: int,
        recognition: RecognitionResult | None,
    ) -> bool:
        """Apply the result for frame *seq*; True if a sign was emitted.

        Results from an earlier generation, or for a frame at or before the
        last applied one, are dropped so late completions never overwrite
        newer state.
        """
        with ctx.lock:
            if generation != ctx.generation or seq <= ctx.last_applied_seq:
                logger.debug(
                    "Discarding stale result for frame %d (last applied %d)",
                    seq,
                    ctx.last_applied_seq,
                )
                return False
            ctx.last_applied_seq = seq
            if recognition is None:
                return False

            ctx.transcript.append(recognition.label)
            record = TranslationRecord(
                user_id=ctx.user_id,
                output_data=recognition.label,
                confidence=recognition.confidence,
            )
            if self.on_recognition is not None:
                self.on_recognition(ctx, record)
            return True

    def _submit(
        self, ctx: SessionContext, seq: int, generation: int, window: np.ndarray
    ) -> Future:
        future = self.executor.submit(ctx.recognizer.recognize_window, window)

        def _done(f: Future) -> None:
            recognition = None
            if not f.cancelled():
                try:
                    recognition = f.result()
                except Exception:
                    logger.warning("Recognition for frame %d failed", seq, exc_info=True)
            self.apply_result(ctx, seq, generation, recognition)

        future.add_done_callback(_done)
        return future
