"""
session.py – Per-user pipeline state.

Each tracked user gets a :class:`SessionContext` holding their own tic
history and gesture buffer.  Nothing here is module-level: the pipeline is
handed the context explicitly on every call, so switching users swaps state
instead of sharing it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from signbridge.config import PipelineConfig
from signbridge.sign_classifier import SequenceModel, SignRecognizer, SIGN_VOCABULARY
from signbridge.tic_filter import TicState


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    name: str = ""
    tics: frozenset[str] = frozenset()
    face_descriptor: Sequence[float] | None = None

    @classmethod
    def create(
        cls,
        user_id: str,
        name: str = "",
        tics: Iterable[str] = (),
        face_descriptor: Sequence[float] | None = None,
    ) -> UserProfile:
        descriptor = None
        if face_descriptor is not None:
            descriptor = tuple(float(v) for v in face_descriptor)
        return cls(user_id, name, frozenset(tics), descriptor)


class SessionContext:
    """Mutable state of one user's recognition session.

    Attributes
    ----------
    tic_state : TicState
        Event histories for this user only.
    recognizer : SignRecognizer
        Owns this user's gesture buffer; the model object is shared.
    generation : int
        Bumped on every start / stop so in-flight results from an earlier
        recording are recognised as stale.
    """

    def __init__(
        self,
        user: UserProfile,
        model: SequenceModel | None = None,
        config: PipelineConfig | None = None,
        labels: Sequence[str] = SIGN_VOCABULARY,
    ) -> None:
        config = config or PipelineConfig()
        self.user = user
        self.tic_state = TicState()
        self.recognizer = SignRecognizer(
            model=model,
            labels=labels,
            capacity=config.buffer_len,
            threshold=config.confidence_threshold,
        )
        # re-entrant: recognition callbacks run while the lock is held
        self.lock = threading.RLock()
        self.active = True
        self.generation = 0
        self.next_seq = 0
        self.last_applied_seq = -1
        self.transcript: list[str] = []

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def tic_profile(self) -> frozenset[str]:
        return self.user.tics

    @property
    def text(self) -> str:
        return " ".join(self.transcript)

    def take_seq(self) -> int:
        seq = self.next_seq
        self.next_seq += 1
        return seq

    def reset(self) -> None:
        """Drop buffered frames, tic history and pending results."""
        self.recognizer.clear_buffer()
        self.tic_state.reset()
        self.generation += 1
        self.last_applied_seq = self.next_seq - 1

    def clear_transcript(self) -> None:
        self.transcript.clear()


@dataclass
class SessionRegistry:
    """Sessions keyed by user id, plus which one is currently active."""

    model: SequenceModel | None = None
    config: PipelineConfig = field(default_factory=PipelineConfig)
    labels: Sequence[str] = field(default_factory=lambda: list(SIGN_VOCABULARY))
    _sessions: dict[str, SessionContext] = field(default_factory=dict, init=False, repr=False)
    _active_id: str | None = field(default=None, init=False)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    @property
    def active(self) -> SessionContext | None:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    def get(self, user: UserProfile) -> SessionContext:
        """Return *user*'s session, creating it on first use."""
        ctx = self._sessions.get(user.user_id)
        if ctx is None:
            ctx = SessionContext(user, self.model, self.config, self.labels)
            self._sessions[user.user_id] = ctx
        else:
            # profile edits (e.g. new tic list) apply without losing history
            ctx.user = user
        return ctx

    def activate(self, user: UserProfile) -> SessionContext:
        """Make *user* the active user and return their own session."""
        ctx = self.get(user)
        self._active_id = user.user_id
        return ctx

    def set_model(self, model: SequenceModel | None) -> None:
        """Swap the classifier for every existing and future session."""
        self.model = model
        for ctx in self._sessions.values():
            ctx.recognizer.model = model

    def drop(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)
        if self._active_id == user_id:
            self._active_id = None
