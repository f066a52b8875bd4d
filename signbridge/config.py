"""
config.py – Tunable constants for the SignBridge pipeline.

Defaults live here as module constants; ``PipelineConfig.from_env`` lets a
deployment override the common ones without code changes, and ``cli.py``
layers its CLI flags on top.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

# ── Defaults ─────────────────────────────────────────────────────────────────

BUFFER_LEN = 30                # frames (~1 s @ 30 fps)
CONFIDENCE_THRESHOLD = 0.7     # argmax probability must be strictly above this
OSCILLATION_REVERSALS = 3      # direction reversals that mark a periodic tic
FACE_MATCH_THRESHOLD = 0.6     # max descriptor distance for user identification

ENV_PREFIX = "SIGNBRIDGE_"


# ── Tic rules ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TicRule:
    """Detection parameters for one tic channel.

    ``window_ms`` is the sliding real-time window events are kept for.
    ``count_threshold`` applies to the event-counting tics (blink, twitch):
    the filter engages when the in-window count is strictly greater.
    ``trigger`` is the channel-specific event level (eye closure distance,
    mouth-width deviation); unused by the oscillation tics.
    """

    window_ms: float
    count_threshold: int = 0
    trigger: float = 0.0

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {self.window_ms}")
        if self.count_threshold < 0:
            raise ValueError(
                f"count_threshold must be >= 0, got {self.count_threshold}"
            )


def default_tic_rules() -> dict[str, TicRule]:
    return {
        "eye_blink_rapid": TicRule(window_ms=1000.0, count_threshold=3, trigger=0.01),
        "mouth_twitch": TicRule(window_ms=2000.0, count_threshold=4, trigger=0.015),
        "head_nod": TicRule(window_ms=2000.0),
        "shoulder_shrug": TicRule(window_ms=2000.0),
    }


# ── Pipeline config ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PipelineConfig:
    buffer_len: int = BUFFER_LEN
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    oscillation_reversals: int = OSCILLATION_REVERSALS
    face_match_threshold: float = FACE_MATCH_THRESHOLD
    tic_rules: dict[str, TicRule] = field(default_factory=default_tic_rules)
    checkpoint: str | None = None
    device: str = "cpu"

    def __post_init__(self) -> None:
        if self.buffer_len < 1:
            raise ValueError(f"buffer_len must be >= 1, got {self.buffer_len}")
        if not 0.0 <= self.confidence_threshold < 1.0:
            raise ValueError(
                "confidence_threshold must be in [0, 1), "
                f"got {self.confidence_threshold}"
            )
        if self.oscillation_reversals < 1:
            raise ValueError(
                "oscillation_reversals must be >= 1, "
                f"got {self.oscillation_reversals}"
            )

    def with_rule(self, name: str, rule: TicRule) -> PipelineConfig:
        """Return a copy with the rule for tic *name* replaced."""
        rules = dict(self.tic_rules)
        rules[name] = rule
        return replace(self, tic_rules=rules)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> PipelineConfig:
        """Build a config from ``<prefix>*`` environment variables.

        Unset variables fall back to the module defaults.
        """
        buffer_len = int(os.getenv(prefix + "BUFFER_LEN") or BUFFER_LEN)
        threshold = float(
            os.getenv(prefix + "CONFIDENCE_THRESHOLD") or CONFIDENCE_THRESHOLD
        )
        checkpoint = (os.getenv(prefix + "CHECKPOINT") or "").strip() or None
        device = (os.getenv(prefix + "DEVICE") or "cpu").strip()
        return cls(
            buffer_len=buffer_len,
            confidence_threshold=threshold,
            checkpoint=checkpoint,
            device=device,
        )
