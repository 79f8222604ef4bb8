"""
test_framing_controller.py — Unit Tests for the Framing Controller
===================================================================

Covers convergence, aspect preservation, bounds containment, the
no-detection coasting behaviour and configuration validation.

Run:
    python -m pytest camtrack/tests/test_framing_controller.py -v
"""

import math
import random

import pytest

from camtrack import config
from camtrack.services import framing_controller
from camtrack.services.framing_controller import FramingController, FramingParams
from camtrack.services.geometry import Rect
from camtrack.services.smoothing import SmootherKind

SCENE = Rect(0.0, 0.0, 1440.0, 1080.0)
ASPECT = 4 / 3
FACE = Rect(600.0, 400.0, 100.0, 100.0)


def make_params(**overrides) -> FramingParams:
    values = dict(
        low_pass_coefficient=0.1,
        max_velocity=20.0,
        max_acceleration=2.0,
        size_max_velocity=100_000.0,
        size_max_acceleration=10_000.0,
        zoom_factor=6.0,
        vertical_bias=0.4,
    )
    values.update(overrides)
    return FramingParams(**values)


def assert_valid_crop(crop: Rect, bounds: Rect, aspect: float):
    assert bounds.contains(crop), f"{crop} escapes {bounds}"
    assert crop.width == pytest.approx(aspect * crop.height, abs=1e-6)


# ═════════════════════════════════════════════════════════════
# 1. INITIAL STATE
# ═════════════════════════════════════════════════════════════

class TestInitialState:

    def test_seeded_with_full_scene(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        assert ctrl.centre == (720.0, 540.0)
        assert ctrl.size == 1440.0 * 1080.0

    def test_roi_is_whole_scene(self):
        ctrl = FramingController.for_scene(1440, 1080, ASPECT, make_params())
        roi = ctrl.roi
        assert roi.x == pytest.approx(0.0, abs=1e-6)
        assert roi.y == pytest.approx(0.0, abs=1e-6)
        assert roi.width == pytest.approx(1440.0)
        assert roi.height == pytest.approx(1080.0)

    def test_zoomed_out_start_is_clamped_into_scene(self):
        """Zoom 6 on the full scene is far too big; it shrinks to fit."""
        ctrl = FramingController(SCENE, ASPECT, make_params())
        crop = ctrl.current_crop()
        assert crop is not None
        assert_valid_crop(crop, SCENE, ASPECT)

    def test_custom_seed(self):
        seed = Rect(100.0, 100.0, 200.0, 150.0)
        ctrl = FramingController(SCENE, ASPECT, make_params(), seed=seed)
        assert ctrl.centre == (200.0, 175.0)
        assert ctrl.size == 30_000.0
        assert ctrl.last_target is None


# ═════════════════════════════════════════════════════════════
# 2. OBSERVE / CONVERGENCE
# ═════════════════════════════════════════════════════════════

class TestObserve:

    def test_end_to_end_scenario(self):
        """
        1440×1080 scene, 4:3 output, one face at (600, 400, 100, 100)
        for 50 ticks with low-pass 0.1.
        """
        ctrl = FramingController(SCENE, ASPECT, make_params())

        prev_cx, prev_cy = ctrl.centre
        for _ in range(50):
            ctrl.observe(FACE)
            cx, cy = ctrl.centre
            # Monotonic approach, never passing the target
            assert 650.0 <= cx <= prev_cx
            assert 450.0 <= cy <= prev_cy
            prev_cx, prev_cy = cx, cy

        cx, cy = ctrl.centre
        assert abs(cx - 650.0) < 2.0
        assert abs(cy - 450.0) < 2.0

        crop = ctrl.current_crop(zoom_factor=6.0, vertical_bias=0.4)
        assert crop is not None
        assert_valid_crop(crop, SCENE, ASPECT)

        # No clamping needed here, so the crop sits exactly where asked
        assert crop.height == pytest.approx(math.sqrt(ctrl.size * 6.0 / ASPECT))
        assert crop.x + crop.width / 2 == pytest.approx(cx)
        assert crop.y == pytest.approx(cy - 0.4 * crop.height)

    def test_size_converges_to_face_area(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(200):
            ctrl.observe(FACE)
        assert ctrl.size == pytest.approx(FACE.area, rel=1e-3)

    def test_low_pass_only_converges_monotonically(self):
        """With huge caps the bounded stage is transparent."""
        params = make_params(max_velocity=1e9, max_acceleration=1e9,
                             size_max_velocity=1e12, size_max_acceleration=1e12)
        ctrl = FramingController(SCENE, ASPECT, params)
        errors = []
        for _ in range(100):
            ctrl.observe(FACE)
            errors.append(abs(ctrl.centre[0] - 650.0))
        assert all(b < a for a, b in zip(errors, errors[1:]))
        assert errors[-1] < 0.01

    def test_size_stays_non_negative_when_face_grows_suddenly(self):
        """
        A tiny face drags the area down at full speed; when a big face
        appears the downward momentum would carry the area below zero.
        """
        ctrl = FramingController(SCENE, ASPECT, make_params(low_pass_coefficient=1.0))
        for _ in range(17):
            ctrl.tick([Rect(715.0, 535.0, 10.0, 10.0)])
        assert ctrl.size == pytest.approx(305_200.0)

        sizes = []
        for _ in range(30):
            ctrl.tick([Rect(320.0, 240.0, 800.0, 600.0)])
            sizes.append(ctrl.size)
            crop = ctrl.current_crop()
            if crop is not None:
                assert_valid_crop(crop, SCENE, ASPECT)

        assert min(sizes) == 0.0
        assert all(size >= 0.0 for size in sizes)
        assert sizes[-1] == pytest.approx(480_000.0)

    def test_zero_area_gives_no_crop(self):
        ctrl = FramingController(SCENE, ASPECT, make_params(low_pass_coefficient=1.0))
        for _ in range(17):
            ctrl.tick([Rect(715.0, 535.0, 10.0, 10.0)])
        for _ in range(5):
            ctrl.tick([Rect(320.0, 240.0, 800.0, 600.0)])
        assert ctrl.size == 0.0
        assert ctrl.current_crop() is None

    def test_chains_are_built_by_the_factory(self, monkeypatch):
        built = []
        real_make_smoother = framing_controller.make_smoother

        def recording_make_smoother(kind, initial, **params):
            built.append((SmootherKind(kind), params.get("lower")))
            return real_make_smoother(kind, initial, **params)

        monkeypatch.setattr(framing_controller, "make_smoother", recording_make_smoother)
        FramingController(SCENE, ASPECT, make_params())

        assert [kind for kind, _ in built] == [
            SmootherKind.BOUNDED_ACCEL, SmootherKind.LOW_PASS,
        ] * 3
        # Only the area chain has a floor
        assert [lower for kind, lower in built if kind is SmootherKind.BOUNDED_ACCEL] == [
            None, None, 0.0,
        ]

    def test_rejects_negative_size(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        with pytest.raises(ValueError):
            ctrl.observe(Rect(0.0, 0.0, -5.0, 10.0))

    def test_rejects_non_finite(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        with pytest.raises(ValueError):
            ctrl.observe(Rect(float("nan"), 0.0, 5.0, 10.0))

    def test_observe_does_not_touch_crop_arguments(self):
        """current_crop is pure: calling it twice gives the same answer."""
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(10):
            ctrl.observe(FACE)
        assert ctrl.current_crop() == ctrl.current_crop()


# ═════════════════════════════════════════════════════════════
# 3. TICK / COAST
# ═════════════════════════════════════════════════════════════

class TestTickAndCoast:

    def test_tick_with_detections_observes_union(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        observed = ctrl.tick([Rect(0, 0, 10, 10), Rect(5, 5, 10, 10)])
        assert observed is True
        assert ctrl.last_target == Rect(0, 0, 15, 15)

    def test_tick_without_detections_before_any_face_is_a_no_op(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        before = ctrl.snapshot()
        assert ctrl.tick([]) is False
        assert ctrl.snapshot() == before

    def test_coasting_finishes_the_slew(self):
        """A face seen briefly is still reached after it disappears."""
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(3):
            ctrl.tick([FACE])
        for _ in range(300):
            ctrl.tick([])

        cx, cy = ctrl.centre
        assert cx == pytest.approx(650.0, abs=0.01)
        assert cy == pytest.approx(450.0, abs=0.01)

    def test_coasting_after_convergence_holds_steady(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(300):
            ctrl.tick([FACE])
        settled = ctrl.current_crop()
        assert settled is not None

        for _ in range(100):
            ctrl.tick([])
            crop = ctrl.current_crop()
            assert crop is not None
            assert crop.x == pytest.approx(settled.x, abs=0.01)
            assert crop.y == pytest.approx(settled.y, abs=0.01)
            assert crop.width == pytest.approx(settled.width, abs=0.01)

    def test_coasting_comes_to_rest(self):
        """Settled and coasting, nothing is moving."""
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(300):
            ctrl.tick([FACE])
        for _ in range(100):
            ctrl.tick([])

        state = ctrl.snapshot()
        assert state.velocity_x == 0.0
        assert state.velocity_y == 0.0
        assert state.size_velocity == 0.0

    def test_resting_window_heads_straight_for_a_moved_face(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(300):
            ctrl.tick([FACE])
        for _ in range(100):
            ctrl.tick([])
        before_x = ctrl.centre[0]

        ctrl.tick([Rect(700.0, 400.0, 100.0, 100.0)])
        assert ctrl.snapshot().velocity_x == pytest.approx(2.0)
        assert ctrl.centre[0] > before_x

    def test_coasting_speed_stays_bounded(self):
        params = make_params()
        ctrl = FramingController(SCENE, ASPECT, params)
        for _ in range(5):
            ctrl.tick([FACE])
        for _ in range(50):
            ctrl.tick([])
            state = ctrl.snapshot()
            assert abs(state.velocity_x) <= params.max_velocity
            assert abs(state.velocity_y) <= params.max_velocity
            assert abs(state.size_velocity) <= params.size_max_velocity


# ═════════════════════════════════════════════════════════════
# 4. CROP GEOMETRY
# ═════════════════════════════════════════════════════════════

class TestCurrentCrop:

    def _ctrl_at(self, cx, cy, width, height, bounds=SCENE):
        """Controller whose smoothed ROI is the given box."""
        seed = Rect(cx - width / 2, cy - height / 2, width, height)
        return FramingController(bounds, ASPECT, make_params(), seed=seed)

    def test_unclamped_crop(self):
        ctrl = self._ctrl_at(720.0, 540.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5)
        assert crop.x == pytest.approx(520.0)
        assert crop.y == pytest.approx(390.0)
        assert crop.width == pytest.approx(400.0)
        assert crop.height == pytest.approx(300.0)

    def test_zoom_scales_area(self):
        ctrl = self._ctrl_at(720.0, 540.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=4.0, vertical_bias=0.5)
        assert crop.area == pytest.approx(4.0 * 400.0 * 300.0)
        assert crop.centre[0] == pytest.approx(720.0)
        assert crop.centre[1] == pytest.approx(540.0)

    def test_vertical_bias_places_centre_in_upper_part(self):
        ctrl = self._ctrl_at(720.0, 540.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=1 / 3)
        assert crop.y == pytest.approx(540.0 - 100.0)

    def test_left_overflow_shrinks_about_centre(self):
        ctrl = self._ctrl_at(100.0, 540.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5)
        assert crop.x == pytest.approx(0.0)
        assert crop.width == pytest.approx(200.0)
        assert crop.height == pytest.approx(150.0)
        assert crop.centre[0] == pytest.approx(100.0)
        assert crop.centre[1] == pytest.approx(540.0)

    def test_top_overflow_shrinks_about_centre(self):
        ctrl = self._ctrl_at(720.0, 100.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5)
        assert crop.y == pytest.approx(0.0)
        assert crop.height == pytest.approx(200.0)
        assert crop.width == pytest.approx(800.0 / 3)
        assert crop.centre[0] == pytest.approx(720.0)
        assert crop.centre[1] == pytest.approx(100.0)

    def test_right_and_bottom_overflow(self):
        ctrl = self._ctrl_at(1400.0, 1000.0, 400.0, 300.0)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5)
        assert crop is not None
        assert_valid_crop(crop, SCENE, ASPECT)
        assert crop.right == pytest.approx(1440.0) or crop.bottom == pytest.approx(1080.0)
        assert crop.centre[0] == pytest.approx(1400.0)
        assert crop.centre[1] == pytest.approx(1000.0)

    def test_offset_bounds(self):
        bounds = Rect(100.0, 50.0, 800.0, 600.0)
        ctrl = self._ctrl_at(150.0, 80.0, 400.0, 300.0, bounds=bounds)
        crop = ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5)
        assert crop is not None
        assert_valid_crop(crop, bounds, ASPECT)

    def test_centre_outside_scene_is_degenerate(self):
        ctrl = self._ctrl_at(-50.0, 540.0, 400.0, 300.0)
        assert ctrl.current_crop(zoom_factor=1.0, vertical_bias=0.5) is None

    def test_zero_size_is_degenerate(self):
        ctrl = self._ctrl_at(720.0, 540.0, 0.0, 0.0)
        assert ctrl.current_crop() is None

    def test_defaults_come_from_params(self):
        ctrl = self._ctrl_at(720.0, 540.0, 100.0, 75.0)
        assert ctrl.current_crop() == ctrl.current_crop(6.0, 0.4)

    @pytest.mark.parametrize("zoom, bias", [
        (0.0, 0.5), (-1.0, 0.5), (float("inf"), 0.5), (float("nan"), 0.5),
        (1.0, -0.1), (1.0, 1.1), (1.0, float("nan")),
    ])
    def test_invalid_crop_arguments(self, zoom, bias):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        with pytest.raises(ValueError):
            ctrl.current_crop(zoom_factor=zoom, vertical_bias=bias)

    def test_random_histories_stay_in_bounds_with_fixed_aspect(self):
        """
        Property check over random parameters, detections (including
        boxes partly or fully off-screen), zooms and biases: every crop
        is either None or inside the scene with the output aspect.
        """
        rng = random.Random(1234)
        for _ in range(40):
            aspect = rng.choice([4 / 3, 16 / 9, 9 / 16, 1.0])
            params = make_params(
                low_pass_coefficient=rng.uniform(0.01, 1.0),
                max_velocity=rng.uniform(0.5, 200.0),
                max_acceleration=rng.uniform(0.05, 50.0),
                size_max_velocity=rng.uniform(1e3, 1e6),
                size_max_acceleration=rng.uniform(1e2, 1e5),
            )
            ctrl = FramingController(SCENE, aspect, params)
            for _ in range(60):
                if rng.random() < 0.3:
                    ctrl.tick([])
                else:
                    faces = [
                        Rect(rng.uniform(-300, 1600), rng.uniform(-300, 1200),
                             rng.uniform(0, 500), rng.uniform(0, 500))
                        for _ in range(rng.randint(1, 3))
                    ]
                    ctrl.tick(faces)
                crop = ctrl.current_crop(rng.uniform(0.1, 20.0), rng.uniform(0.0, 1.0))
                if crop is not None:
                    assert crop.width > 0 and crop.height > 0
                    assert_valid_crop(crop, SCENE, aspect)


# ═════════════════════════════════════════════════════════════
# 5. CONFIGURATION
# ═════════════════════════════════════════════════════════════

class TestConfiguration:

    @pytest.mark.parametrize("aspect", [0.0, -1.0, float("inf"), float("nan")])
    def test_invalid_aspect(self, aspect):
        with pytest.raises(ValueError):
            FramingController(SCENE, aspect, make_params())

    def test_degenerate_bounds(self):
        with pytest.raises(ValueError):
            FramingController(Rect(0, 0, 0, 100), ASPECT, make_params())

    @pytest.mark.parametrize("field, value", [
        ("low_pass_coefficient", 0.0),
        ("low_pass_coefficient", 1.5),
        ("max_velocity", 0.0),
        ("max_acceleration", -1.0),
        ("size_max_velocity", 0.0),
        ("size_max_acceleration", -5.0),
        ("zoom_factor", 0.0),
        ("vertical_bias", 1.2),
        ("vertical_bias", -0.1),
        ("max_velocity", float("nan")),
    ])
    def test_invalid_params_rejected(self, field, value):
        with pytest.raises(ValueError):
            make_params(**{field: value})

    def test_with_changes_validates(self):
        params = make_params()
        assert params.with_changes(zoom_factor=3.0).zoom_factor == 3.0
        with pytest.raises(ValueError):
            params.with_changes(zoom_factor=-3.0)

    def test_from_config_reads_module_values(self, monkeypatch):
        monkeypatch.setattr(config, "ZOOM_FACTOR", 3.5)
        monkeypatch.setattr(config, "LOW_PASS_COEFFICIENT", 0.2)
        params = FramingParams.from_config()
        assert params.zoom_factor == 3.5
        assert params.low_pass_coefficient == 0.2

    def test_defaults_are_valid(self):
        FramingParams()
        FramingController.for_scene(1440, 1080)

    def test_reconfigure_keeps_position(self):
        ctrl = FramingController(SCENE, ASPECT, make_params())
        for _ in range(5):
            ctrl.observe(FACE)
        before = ctrl.centre

        new_params = make_params(max_velocity=0.5, max_acceleration=0.1, zoom_factor=2.0)
        ctrl.reconfigure(new_params)
        assert ctrl.centre == before
        assert ctrl.params is new_params

        ctrl.observe(FACE)
        assert abs(ctrl.snapshot().velocity_x) <= 0.5
        assert ctrl.current_crop() == ctrl.current_crop(2.0, 0.4)
