"""
signbridge package – streaming sign recognition with tic filtering.

Exposes the main pipeline components:
    TicFilter       – suppresses a user's registered involuntary movements
    classify_mood   – face-geometry mood heuristic
    extract_features – per-frame 150-d feature vector
    SignRecognizer  – 30-frame window + gated LSTM sign classifier
    SignPipeline    – per-user orchestration of all of the above
"""

from .features import FEATURE_DIM, extract_features
from .mood import MoodLabel, classify_mood
from .pipeline import LandmarkFrame, SignPipeline, TranslationRecord
from .session import SessionContext, UserProfile
from .sign_classifier import RecognitionResult, SignRecognizer
from .tic_filter import TicFilter, TicState, is_oscillating

__all__ = [
    "FEATURE_DIM",
    "extract_features",
    "MoodLabel",
    "classify_mood",
    "LandmarkFrame",
    "SignPipeline",
    "TranslationRecord",
    "SessionContext",
    "UserProfile",
    "RecognitionResult",
    "SignRecognizer",
    "TicFilter",
    "TicState",
    "is_oscillating",
]
