"""
tests/test_pipeline.py – Per-user sessions, ordering and start / stop.
"""

from __future__ import annotations

import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from signbridge.config import PipelineConfig
from signbridge.face_identity import FaceRecognizer
from signbridge.features import FEATURE_DIM
from signbridge.mood import MoodLabel
from signbridge.pipeline import LandmarkFrame, SignPipeline, TranslationRecord
from signbridge.session import SessionRegistry, UserProfile
from signbridge.sign_classifier import RecognitionResult
from tests.fixtures.synthetic_landmarks import make_face, make_hand, make_pose

CAPACITY = 3


class ConfidentModel:
    def __init__(self) -> None:
        self.calls = 0

    def predict_proba(self, window: np.ndarray) -> np.ndarray:
        self.calls += 1
        return np.array([0.9] + [0.1 / 9] * 9)


def _frame(t: float, **kwargs) -> LandmarkFrame:
    defaults = dict(
        hands={"right": make_hand()},
        pose=make_pose(),
        face=make_face(),
        timestamp_ms=t,
    )
    defaults.update(kwargs)
    return LandmarkFrame(**defaults)


def _pipeline(model=None, **kwargs):
    records: list[TranslationRecord] = []
    pipe = SignPipeline(
        config=PipelineConfig(buffer_len=CAPACITY),
        model=model,
        on_recognition=lambda ctx, rec: records.append(rec),
        **kwargs,
    )
    return pipe, records


# ── Frame pass ───────────────────────────────────────────────────────────────


def test_frame_result_contents() -> None:
    pipe, _ = _pipeline()
    ctx = pipe.session(UserProfile.create("u1"))
    face = make_face(mouth_open=0.06, eyebrow_height=0.2)
    result = pipe.process_frame(ctx, _frame(0, face=face))

    assert result.seq == 0
    assert result.mood is MoodLabel.SURPRISED
    assert result.features.shape == (FEATURE_DIM,)
    assert result.ready is False
    assert result.face is face
    assert result.hand_shapes["left"] is None
    assert set(result.hand_shapes["right"]) == {"thumb", "index", "middle", "ring", "pinky"}


def test_editing_frame_result_leaves_window_alone() -> None:
    pipe, _ = _pipeline()
    ctx = pipe.session(UserProfile.create("u1"))
    result = pipe.process_frame(ctx, _frame(0))
    expected = result.features.copy()
    result.features[:] = 99.0
    np.testing.assert_array_equal(ctx.recognizer.buffer.as_array()[0], expected)


def test_empty_frame_degrades_gracefully() -> None:
    pipe, _ = _pipeline()
    ctx = pipe.session(UserProfile.create("u1", tics=["eye_blink_rapid", "head_nod"]))
    result = pipe.process_frame(ctx, LandmarkFrame())
    assert result.mood is MoodLabel.NEUTRAL
    assert not result.features.any()


def test_recognition_after_buffer_fills() -> None:
    pipe, records = _pipeline(ConfidentModel())
    ctx = pipe.session(UserProfile.create("u1"))

    results = [pipe.process_frame(ctx, _frame(33 * i)) for i in range(CAPACITY + 1)]
    assert [r.ready for r in results] == [False, False, True, True]
    assert results[1].recognition is None
    assert results[2].recognition.label == "Hello"
    assert results[2].recognition.confidence == pytest.approx(0.9)

    assert [r.output_data for r in records] == ["Hello", "Hello"]
    assert records[0].user_id == "u1"
    assert records[0].input_type == "sign"
    assert ctx.text == "Hello Hello"
    assert set(records[0].to_dict()) == {
        "user_id", "output_data", "confidence", "input_type", "timestamp",
    }


def test_no_model_never_emits() -> None:
    pipe, records = _pipeline(None)
    ctx = pipe.session(UserProfile.create("u1"))
    for i in range(CAPACITY * 2):
        result = pipe.process_frame(ctx, _frame(33 * i))
    assert result.ready is True
    assert result.recognition is None
    assert records == []


def test_model_can_be_loaded_later() -> None:
    pipe, records = _pipeline(None)
    ctx = pipe.session(UserProfile.create("u1"))
    for i in range(CAPACITY):
        pipe.process_frame(ctx, _frame(33 * i))
    pipe.set_model(ConfidentModel())
    assert pipe.process_frame(ctx, _frame(100)).recognition is not None


def test_pose_is_tic_filtered() -> None:
    pipe, _ = _pipeline()
    ctx = pipe.session(UserProfile.create("u1", tics=["head_nod"]))
    ys = [0.30, 0.35, 0.30, 0.35, 0.30]
    for i, y in enumerate(ys):
        pose = make_pose(nose_y=y)
        result = pipe.process_frame(ctx, _frame(100 * i, pose=pose))
    assert result.pose is not pose
    assert result.pose[0, 1] == pytest.approx(float(np.mean(np.float32(ys))), abs=1e-6)


# ── Ordering ─────────────────────────────────────────────────────────────────


def test_out_of_order_result_is_discarded() -> None:
    pipe, records = _pipeline()
    ctx = pipe.session(UserProfile.create("u1"))
    newer = RecognitionResult("Yes", 0.9)
    older = RecognitionResult("No", 0.95)

    assert pipe.apply_result(ctx, 5, ctx.generation, newer) is True
    assert pipe.apply_result(ctx, 4, ctx.generation, older) is False
    assert pipe.apply_result(ctx, 5, ctx.generation, older) is False
    assert [r.output_data for r in records] == ["Yes"]
    assert ctx.last_applied_seq == 5


def test_empty_result_still_advances_order() -> None:
    pipe, records = _pipeline()
    ctx = pipe.session(UserProfile.create("u1"))
    assert pipe.apply_result(ctx, 3, ctx.generation, None) is False
    assert pipe.apply_result(ctx, 2, ctx.generation, RecognitionResult("No", 0.9)) is False
    assert records == []


def test_async_results_apply_in_frame_order() -> None:
    records: list[TranslationRecord] = []
    seqs: list[int] = []

    def on_recognition(ctx, rec):
        records.append(rec)
        seqs.append(ctx.last_applied_seq)

    with ThreadPoolExecutor(max_workers=2) as pool:
        pipe = SignPipeline(
            config=PipelineConfig(buffer_len=CAPACITY),
            model=ConfidentModel(),
            executor=pool,
            on_recognition=on_recognition,
        )
        ctx = pipe.session(UserProfile.create("u1"))
        for i in range(CAPACITY + 4):
            result = pipe.process_frame(ctx, _frame(33 * i))
            assert result.recognition is None

    assert seqs == sorted(seqs)
    assert len(set(seqs)) == len(seqs)
    assert 1 <= len(records) <= 5
    assert all(r.output_data == "Hello" for r in records)


def test_result_after_stop_is_discarded() -> None:
    pipe, records = _pipeline()
    ctx = pipe.session(UserProfile.create("u1"))
    generation = ctx.generation
    pipe.stop(ctx)
    assert pipe.apply_result(ctx, 10, generation, RecognitionResult("Yes", 0.9)) is False
    assert records == []


def test_async_result_in_flight_during_stop() -> None:
    release = threading.Event()

    class SlowModel(ConfidentModel):
        def predict_proba(self, window):
            release.wait(timeout=5)
            return super().predict_proba(window)

    records: list[TranslationRecord] = []
    with ThreadPoolExecutor(max_workers=1) as pool:
        pipe = SignPipeline(
            config=PipelineConfig(buffer_len=1),
            model=SlowModel(),
            executor=pool,
            on_recognition=lambda ctx, rec: records.append(rec),
        )
        ctx = pipe.session(UserProfile.create("u1"))
        pipe.process_frame(ctx, _frame(0))
        pipe.stop(ctx)
        release.set()
    assert records == []


# ── Start / stop ─────────────────────────────────────────────────────────────


def test_stop_halts_frames_and_flushes_state() -> None:
    pipe, _ = _pipeline(ConfidentModel())
    ctx = pipe.session(UserProfile.create("u1", tics=["eye_blink_rapid"]))
    for i in range(CAPACITY):
        pipe.process_frame(ctx, _frame(33 * i, face=make_face(eye_aperture=0.005)))
    assert ctx.recognizer.is_ready
    assert ctx.tic_state.histories

    pipe.stop(ctx)
    assert pipe.process_frame(ctx, _frame(200)) is None
    assert len(ctx.recognizer.buffer) == 0
    assert not ctx.tic_state.histories


def test_restart_refills_from_scratch() -> None:
    pipe, _ = _pipeline(ConfidentModel())
    ctx = pipe.session(UserProfile.create("u1"))
    for i in range(CAPACITY):
        pipe.process_frame(ctx, _frame(33 * i))

    pipe.stop(ctx)
    pipe.start(ctx)
    readiness = [pipe.process_frame(ctx, _frame(1000 + 33 * i)).ready for i in range(CAPACITY)]
    assert readiness == [False] * (CAPACITY - 1) + [True]


# ── Users ────────────────────────────────────────────────────────────────────


def test_switching_users_swaps_state() -> None:
    pipe, records = _pipeline(ConfidentModel())
    alice = UserProfile.create("alice", tics=["eye_blink_rapid"])
    bob = UserProfile.create("bob")

    a_ctx = pipe.session(alice)
    for i in range(CAPACITY):
        pipe.process_frame(a_ctx, _frame(33 * i, face=make_face(eye_aperture=0.005)))

    b_ctx = pipe.session(bob)
    assert pipe.registry.active is b_ctx
    assert b_ctx is not a_ctx
    assert b_ctx.tic_state is not a_ctx.tic_state
    assert len(b_ctx.recognizer.buffer) == 0
    assert pipe.process_frame(b_ctx, _frame(500)).ready is False

    # back to alice: her own state is still there
    assert pipe.session(alice) is a_ctx
    assert a_ctx.recognizer.is_ready
    assert {r.user_id for r in records} == {"alice"}


def test_registry_profile_update_keeps_history() -> None:
    registry = SessionRegistry(config=PipelineConfig(buffer_len=CAPACITY))
    ctx = registry.get(UserProfile.create("u1"))
    ctx.recognizer.add_frame(np.zeros(FEATURE_DIM))
    updated = UserProfile.create("u1", tics=["head_nod"])
    assert registry.get(updated) is ctx
    assert ctx.tic_profile == frozenset({"head_nod"})
    assert len(ctx.recognizer.buffer) == 1

    registry.activate(updated)
    registry.drop("u1")
    assert "u1" not in registry
    assert registry.active is None


def test_identify_user_activates_session() -> None:
    alice_face = make_face()
    bob_face = make_face(shift=0.2)
    pipe, _ = _pipeline()
    alice = UserProfile.create("alice", face_descriptor=FaceRecognizer.register_face(alice_face))
    bob = UserProfile.create("bob", face_descriptor=FaceRecognizer.register_face(bob_face))
    pipe.load_users([alice, bob])

    ctx = pipe.identify_user(bob_face)
    assert ctx is not None
    assert ctx.user_id == "bob"
    assert pipe.registry.active is ctx
    assert pipe.identify_user(None) is None
