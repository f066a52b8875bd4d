"""
sign_classifier.py – Sliding window of feature vectors → recognised sign.

Pieces
------

* **GestureBuffer**
    Fixed-capacity FIFO of per-frame ``(150,)`` feature vectors.  FILLING
    while shorter than capacity, READY once full; the oldest frame is evicted
    on every append after that.

* **LSTMClassifier** / **TorchSequenceModel**
    ``X ∈ ℝ^{T×D}`` with *T* = 30 frames and *D* = 150.  The final hidden
    state of the top LSTM layer is projected to class logits; the wrapper
    turns them into a probability vector over the sign vocabulary.

* **SignRecognizer**
    Owns one buffer, runs any :class:`SequenceModel` over it once READY and
    applies the confidence gate.  A prediction at or below the threshold is
    dropped, never surfaced with a low score.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

import numpy as np
import torch
import torch.nn as nn

from signbridge.config import BUFFER_LEN, CONFIDENCE_THRESHOLD
from signbridge.features import FEATURE_DIM

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

SIGN_VOCABULARY: list[str] = [
    "Hello",
    "Thank you",
    "Yes",
    "No",
    "Please",
    "Help",
    "Sorry",
    "Good",
    "Bad",
    "Question",
]

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class RecognitionResult:
    label: str
    confidence: float


class SequenceModel(Protocol):
    """Anything mapping a ``(T, D)`` window to class probabilities."""

    def predict_proba(self, window: np.ndarray) -> np.ndarray: ...


# ── GestureBuffer ────────────────────────────────────────────────────────────


class GestureBuffer:
    """Fixed-capacity FIFO of feature vectors in frame order."""

    def __init__(self, capacity: int = BUFFER_LEN) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._frames: deque[np.ndarray] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def is_ready(self) -> bool:
        return len(self._frames) == self.capacity

    def add_frame(self, features: np.ndarray) -> bool:
        """Append *features* (evicting the oldest when full); True iff READY."""
        self._frames.append(np.array(features, dtype=np.float32))
        return self.is_ready

    def clear(self) -> None:
        self._frames.clear()

    def as_array(self) -> np.ndarray:
        """Stack the buffered frames into a ``(len, D)`` array."""
        if not self._frames:
            return np.zeros((0, FEATURE_DIM), dtype=np.float32)
        return np.stack(list(self._frames))


# ── LSTMClassifier ───────────────────────────────────────────────────────────


class LSTMClassifier(nn.Module):
    """Sequence classifier: ``(batch, T, 150) → (batch, num_classes)``.

    The final hidden state of the top LSTM layer is projected to class logits.
    """

    def __init__(
        self,
        input_dim: int = FEATURE_DIM,
        hidden_dim: int = 128,
        num_layers: int = 2,
        num_classes: int = len(SIGN_VOCABULARY),
        dropout: float = 0.2,
    ) -> None:
        super().__init__()
        self.lstm = nn.LSTM(
            input_dim,
            hidden_dim,
            num_layers,
            batch_first=True,
            dropout=dropout if num_layers > 1 else 0.0,
        )
        self.fc = nn.Linear(hidden_dim, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Forward pass.

        Parameters
        ----------
        x : torch.Tensor
            Shape ``(batch, T, D)`` where ``T`` = sequence length and
            ``D`` = 150 (both hands + key pose joints, xyz).

        Returns
        -------
        torch.Tensor
            Logits of shape ``(batch, num_classes)``.
        """
        # h_n shape: (num_layers, batch, hidden_dim)
        _, (h_n, _) = self.lstm(x)
        return self.fc(h_n[-1])


class TorchSequenceModel:
    """Adapt an ``nn.Module`` returning logits to the :class:`SequenceModel` contract."""

    def __init__(self, module: nn.Module, device: str = "cpu") -> None:
        self.device = torch.device(device)
        self.module = module.to(self.device)
        self.module.eval()

    def predict_proba(self, window: np.ndarray) -> np.ndarray:
        x = torch.from_numpy(np.ascontiguousarray(window, dtype=np.float32))
        x = x.unsqueeze(0).to(self.device)  # (1, T, D)
        with torch.no_grad():
            logits = self.module(x)  # (1, C)
        probs = torch.softmax(logits, dim=-1)
        return probs[0].cpu().numpy()


def load_sequence_model(
    checkpoint: str | Path,
    device: str = "cpu",
    num_classes: int = len(SIGN_VOCABULARY),
) -> TorchSequenceModel:
    """Load an :class:`LSTMClassifier` state-dict from *checkpoint*."""
    ckpt = Path(checkpoint)
    if not ckpt.exists():
        raise FileNotFoundError(f"Checkpoint not found: {ckpt}")
    module = LSTMClassifier(num_classes=num_classes)
    module.load_state_dict(torch.load(ckpt, map_location=torch.device(device)))
    logger.info("LSTM loaded from %s", ckpt)
    return TorchSequenceModel(module, device=device)


# ── SignRecognizer ───────────────────────────────────────────────────────────


class SignRecognizer:
    """Buffer frames and emit gated recognition results.

    Parameters
    ----------
    model : SequenceModel or None
        Pretrained classifier.  ``None`` means no model is loaded yet:
        frames still accumulate but :meth:`recognize_sign` returns ``None``.
    labels : sequence of str
        Class vocabulary in the model's output order.
    capacity : int
        Window length in frames.
    threshold : float
        The argmax probability must be strictly greater to emit a result.
    """

    def __init__(
        self,
        model: SequenceModel | None = None,
        labels: Sequence[str] = SIGN_VOCABULARY,
        capacity: int = BUFFER_LEN,
        threshold: float = CONFIDENCE_THRESHOLD,
    ) -> None:
        self.model = model
        self.labels = list(labels)
        self.threshold = threshold
        self.buffer = GestureBuffer(capacity)

    @property
    def is_ready(self) -> bool:
        return self.buffer.is_ready

    def add_frame(self, features: np.ndarray) -> bool:
        return self.buffer.add_frame(features)

    def clear_buffer(self) -> None:
        self.buffer.clear()

    def recognize_sign(self) -> RecognitionResult | None:
        """Classify the current window; ``None`` unless READY and confident."""
        if not self.buffer.is_ready:
            return None
        return self.recognize_window(self.buffer.as_array())

    def recognize_window(self, window: np.ndarray) -> RecognitionResult | None:
        """Run the model on a ``(capacity, D)`` snapshot and apply the gate."""
        if self.model is None or len(window) < self.buffer.capacity:
            return None

        try:
            probs = np.asarray(self.model.predict_proba(window), dtype=np.float64).reshape(-1)
        except Exception:
            logger.warning("Sign inference failed; skipping this frame", exc_info=True)
            return None

        if probs.size == 0 or not np.all(np.isfinite(probs)):
            logger.warning("Sign inference returned non-finite probabilities")
            return None

        idx = int(np.argmax(probs))
        conf = float(probs[idx])
        if conf <= self.threshold:
            return None

        label = self.labels[idx] if idx < len(self.labels) else UNKNOWN_LABEL
        return RecognitionResult(label=label, confidence=conf)
