"""
face_identity.py – Identify a known user from face-mesh geometry.

A lightweight descriptor (20 fixed face-mesh points, xyz) compared by
Euclidean distance against the descriptors stored on user profiles.  Used to
pick which user's tic profile and session state apply to the incoming frames.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np

from signbridge.config import FACE_MATCH_THRESHOLD
from signbridge.landmarks import as_landmark_array
from signbridge.session import UserProfile

logger = logging.getLogger(__name__)

# Face-oval points (forehead → jaw), stable under expression changes
DESCRIPTOR_INDICES: tuple[int, ...] = (
    10, 338, 297, 332, 284, 251, 389, 356, 454, 323,
    162, 127, 234, 93, 132, 58, 172, 136, 150, 176,
)
DESCRIPTOR_DIM = len(DESCRIPTOR_INDICES) * 3


def extract_face_descriptor(face: Any) -> np.ndarray | None:
    """Return the ``(60,)`` descriptor, or None when the face set is incomplete."""
    lm = as_landmark_array(face)
    if len(lm) <= max(DESCRIPTOR_INDICES):
        return None
    return lm[list(DESCRIPTOR_INDICES)].reshape(-1).astype(np.float32)


@dataclass(frozen=True)
class UserMatch:
    user: UserProfile
    confidence: float


class FaceRecognizer:
    """Nearest-neighbour match of a face descriptor against known users."""

    def __init__(self, threshold: float = FACE_MATCH_THRESHOLD) -> None:
        self.threshold = threshold
        self._known: list[tuple[UserProfile, np.ndarray]] = []

    def __len__(self) -> int:
        return len(self._known)

    def load_known_faces(self, users: Iterable[UserProfile]) -> None:
        """Keep the users whose profile carries a usable descriptor."""
        self._known = []
        for user in users:
            if user.face_descriptor is None:
                continue
            desc = np.asarray(user.face_descriptor, dtype=np.float32).reshape(-1)
            if desc.size != DESCRIPTOR_DIM:
                logger.debug(
                    "Skipping user %r: descriptor has %d values", user.user_id, desc.size
                )
                continue
            self._known.append((user, desc))

    def recognize_user(self, face: Any) -> UserMatch | None:
        descriptor = extract_face_descriptor(face)
        if descriptor is None or not self._known:
            return None

        best: UserProfile | None = None
        best_dist = float("inf")
        for user, known in self._known:
            dist = float(np.linalg.norm(descriptor - known))
            if dist < best_dist and dist < self.threshold:
                best, best_dist = user, dist

        if best is None:
            return None
        return UserMatch(user=best, confidence=1.0 - best_dist / self.threshold)

    @staticmethod
    def register_face(face: Any) -> np.ndarray | None:
        """Descriptor to store on a new user's profile."""
        return extract_face_descriptor(face)
