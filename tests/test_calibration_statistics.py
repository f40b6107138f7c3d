"""
Tests for calibration sample cleaning, quality scoring and fitting
"""

import pytest

from screen_gaze.calibration.statistics import (
    CalibrationPointResult,
    CalibrationSample,
    CalibrationTransform,
    SampleFilterSettings,
    clean_samples,
    consistency,
    data_quality,
    fit_transform,
    median_point,
    remove_outliers,
    sample_confidence,
    trim_by_time,
    weighted_average,
)
from screen_gaze.models import ScreenPoint


def make_samples(points, confidence=1.0, start=0.0, step=0.05):
    return [
        CalibrationSample(ScreenPoint(x, y), start + i * step, confidence)
        for i, (x, y) in enumerate(points)
    ]


class TestSampleConfidence:

    def test_first_sample_in_bounds(self):
        assert sample_confidence(ScreenPoint(10, 10), None, in_bounds=True) == pytest.approx(0.8)

    def test_first_sample_out_of_bounds(self):
        assert sample_confidence(ScreenPoint(-10, 10), None, in_bounds=False) == pytest.approx(0.3)

    def test_close_to_previous_capped(self):
        assert sample_confidence(ScreenPoint(10, 10), ScreenPoint(12, 10), in_bounds=True) == 1.0

    def test_far_from_previous_halved(self):
        confidence = sample_confidence(ScreenPoint(0, 0), ScreenPoint(500, 0), in_bounds=True)
        assert confidence == pytest.approx(0.4)


class TestCleaning:

    def test_trim_by_time_fractions(self):
        samples = make_samples([(i, 0) for i in range(20)])
        trimmed = trim_by_time(samples)
        # [max(1, 4), min(19, 18))
        assert [s.point.x for s in trimmed] == list(range(4, 18))

    def test_trim_always_drops_first_and_last(self):
        samples = make_samples([(i, 0) for i in range(3)])
        assert [s.point.x for s in trim_by_time(samples)] == [1]

    def test_small_inputs_not_filtered(self):
        samples = make_samples([(0, 0), (900, 900), (5, 5)], confidence=0.1)
        assert len(clean_samples(samples)) == 3

    def test_cleaning_sorts_by_time(self):
        samples = make_samples([(i, 0) for i in range(4)])
        shuffled = [samples[2], samples[0], samples[3], samples[1]]
        assert [s.point.x for s in clean_samples(shuffled)] == [0, 1, 2, 3]

    def test_low_confidence_dropped(self):
        good = make_samples([(100, 100)] * 20, confidence=0.9)
        bad = [
            CalibrationSample(s.point, s.timestamp + 0.001, 0.3) for s in good
        ]
        cleaned = clean_samples(good + bad, SampleFilterSettings())
        assert cleaned
        assert all(s.confidence >= 0.6 for s in cleaned)

    def test_outlier_removed(self):
        points = [(100 + (i % 3), 100 + (i % 2)) for i in range(10)] + [(900, 900)]
        samples = make_samples(points)
        kept = remove_outliers(samples)
        assert len(kept) == 10
        assert all(s.point.x < 200 for s in kept)

    def test_outlier_removal_keeps_middle_sample(self):
        """If nothing is within the threshold the middle sample survives"""
        samples = make_samples([(0, 0), (10, 0), (20, 0), (30, 0), (40, 0)])
        kept = remove_outliers(samples, mad_multiplier=0.0)
        assert len(kept) >= 1
        assert median_point(samples) == ScreenPoint(20, 0)

    def test_identical_points_survive(self):
        samples = make_samples([(500, 400)] * 22)
        assert len(clean_samples(samples)) == 15


class TestQuality:

    def test_weighted_average(self):
        samples = [
            CalibrationSample(ScreenPoint(0, 0), 0.0, 1.0),
            CalibrationSample(ScreenPoint(100, 100), 0.1, 3.0),
        ]
        assert weighted_average(samples) == ScreenPoint(75.0, 75.0)

    def test_weighted_average_without_weight(self):
        samples = [CalibrationSample(ScreenPoint(10, 10), 0.0, 0.0)]
        assert weighted_average(samples) == ScreenPoint(0.0, 0.0)

    def test_consistency_of_identical_points(self):
        assert consistency(make_samples([(5, 5)] * 4)) == 1.0

    def test_consistency_drops_with_spread(self):
        tight = consistency(make_samples([(0, 0), (1, 1), (0, 1), (1, 0)]))
        loose = consistency(make_samples([(0, 0), (100, 100), (0, 100), (100, 0)]))
        assert 0.0 < loose < tight < 1.0

    def test_quality_of_fifteen_perfect_samples(self):
        """0.4 * 1 + 0.4 * 1 + 0.2 * 15/60"""
        assert data_quality(make_samples([(300, 300)] * 15)) == pytest.approx(0.85)

    def test_quality_needs_two_samples(self):
        assert data_quality(make_samples([(1, 1)])) == 0.0
        assert data_quality([]) == 0.0

    def test_count_weight_saturates(self):
        assert data_quality(make_samples([(1, 1)] * 80)) == pytest.approx(1.0)


def make_result(target, raw, quality=0.8):
    return CalibrationPointResult(ScreenPoint(*target), ScreenPoint(*raw), quality, 0.0)


class TestFit:

    def test_perfect_data_gives_identity(self):
        targets = [(288, 162), (1632, 162), (960, 540), (288, 918)]
        transform = fit_transform([make_result(t, t) for t in targets])
        assert transform.scale_x == pytest.approx(1.0)
        assert transform.scale_y == pytest.approx(1.0)
        assert transform.offset_x == pytest.approx(0.0, abs=1e-9)
        assert transform.offset_y == pytest.approx(0.0, abs=1e-9)

    def test_recovers_scale_and_offset(self):
        targets = [(288, 162), (1632, 162), (960, 540), (288, 918), (1632, 918)]
        # raw = 0.5 * target + 100  =>  target = 2 * raw - 200
        results = [make_result(t, (0.5 * t[0] + 100, 0.5 * t[1] + 100)) for t in targets]
        transform = fit_transform(results)
        assert transform.scale_x == pytest.approx(2.0)
        assert transform.scale_y == pytest.approx(2.0)
        assert transform.offset_x == pytest.approx(-200.0)
        assert transform.offset_y == pytest.approx(-200.0)

    def test_no_raw_spread_keeps_unit_scale(self):
        results = [make_result((100, 100), (50, 60)), make_result((300, 300), (50, 60))]
        transform = fit_transform(results)
        assert transform.scale_x == 1.0
        assert transform.scale_y == 1.0
        assert transform.offset_x == pytest.approx(150.0)

    def test_empty_results_identity(self):
        assert fit_transform([]).is_identity


def test_transform_apply_and_dict():
    transform = CalibrationTransform(scale_x=2.0, scale_y=0.5, offset_x=10.0, offset_y=-4.0)
    assert transform.apply(ScreenPoint(10, 20)) == ScreenPoint(30.0, 6.0)
    assert transform.to_dict() == {'scale_x': 2.0, 'scale_y': 0.5, 'offset_x': 10.0, 'offset_y': -4.0}
    assert CalibrationTransform.identity().is_identity
