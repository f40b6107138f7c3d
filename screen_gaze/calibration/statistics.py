"""
Statistics for calibration data.

Cleaning of per-target gaze samples (time trimming, confidence filtering,
MAD outlier removal), per-target aggregation and quality scoring, and the
per-axis affine fit across targets.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from screen_gaze.models import ScreenPoint


@dataclass(frozen=True)
class CalibrationSample:
    """A raw gaze point collected while the user fixates on a target."""
    point: ScreenPoint
    timestamp: float
    confidence: float


@dataclass(frozen=True)
class CalibrationPointResult:
    """Aggregated outcome for one calibration target."""
    target_point: ScreenPoint
    raw_point: ScreenPoint
    quality: float
    timestamp: float

    def to_dict(self) -> Dict:
        return {
            'target': list(self.target_point.as_tuple()),
            'raw': list(self.raw_point.as_tuple()),
            'quality': float(self.quality),
            'timestamp': float(self.timestamp),
        }


@dataclass
class CalibrationTransform:
    """Per-axis affine correction: calibrated = raw * scale + offset."""
    scale_x: float = 1.0
    scale_y: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    @classmethod
    def identity(cls) -> "CalibrationTransform":
        return cls()

    @property
    def is_identity(self) -> bool:
        return (self.scale_x == 1.0 and self.scale_y == 1.0
                and self.offset_x == 0.0 and self.offset_y == 0.0)

    def apply(self, point: ScreenPoint) -> ScreenPoint:
        return ScreenPoint(
            point.x * self.scale_x + self.offset_x,
            point.y * self.scale_y + self.offset_y,
        )

    def to_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


@dataclass(frozen=True)
class SampleFilterSettings:
    """Thresholds used when cleaning one target's samples."""
    confidence_threshold: float = 0.6
    trim_start_fraction: float = 0.2
    trim_end_fraction: float = 0.9
    mad_multiplier: float = 3.0

    # Below this many samples no trimming or outlier removal is attempted
    min_samples_to_filter: int = 5


def _points_array(samples: Sequence[CalibrationSample]) -> np.ndarray:
    return np.array([s.point.as_tuple() for s in samples], dtype=float).reshape(-1, 2)


def sample_confidence(
    point: ScreenPoint,
    previous: Optional[ScreenPoint],
    in_bounds: bool,
    max_reasonable_distance: float = 300.0,
) -> float:
    """
    Confidence of a single raw gaze sample.

    0.8 inside the screen (0.3 outside), +0.2 when close to the previous
    sample, halved when far from it, capped at 1.0.
    """
    confidence = 0.8 if in_bounds else 0.3
    if previous is not None:
        if point.distance_to(previous) < max_reasonable_distance:
            confidence += 0.2
        else:
            confidence *= 0.5
    return min(1.0, confidence)


def trim_by_time(
    samples: Sequence[CalibrationSample],
    start_fraction: float = 0.2,
    end_fraction: float = 0.9,
) -> List[CalibrationSample]:
    """
    Drop the settling head and anticipatory tail of time-ordered samples.

    At least the first and last sample are always dropped.
    """
    n = len(samples)
    start = max(1, int(n * start_fraction))
    end = min(n - 1, int(n * end_fraction))
    return list(samples[start:end])


def median_point(samples: Sequence[CalibrationSample]) -> ScreenPoint:
    """Per-axis (upper) median of the sample points."""
    xs = sorted(s.point.x for s in samples)
    ys = sorted(s.point.y for s in samples)
    return ScreenPoint(xs[len(xs) // 2], ys[len(ys) // 2])


def median_absolute_deviation(samples: Sequence[CalibrationSample], center: ScreenPoint) -> float:
    distances = sorted(s.point.distance_to(center) for s in samples)
    return distances[len(distances) // 2]


def remove_outliers(
    samples: Sequence[CalibrationSample],
    mad_multiplier: float = 3.0,
    min_samples: int = 5,
) -> List[CalibrationSample]:
    """
    Drop samples further than `mad_multiplier` * MAD from the median point.

    If nothing survives, the middle sample is kept.
    """
    samples = list(samples)
    if len(samples) < min_samples:
        return samples

    center = median_point(samples)
    threshold = median_absolute_deviation(samples, center) * mad_multiplier

    kept = [s for s in samples if s.point.distance_to(center) <= threshold]
    if not kept:
        return [samples[len(samples) // 2]]
    return kept


def clean_samples(
    samples: Sequence[CalibrationSample],
    settings: Optional[SampleFilterSettings] = None,
) -> List[CalibrationSample]:
    """
    Full cleaning chain for one target's collection window.

    Args:
        samples: Raw samples in any order
        settings: Thresholds (defaults match the calibration defaults)

    Returns:
        Time-ordered samples that survive trimming, confidence filtering and
        outlier removal. Tiny inputs are returned sorted but unfiltered.
    """
    settings = settings or SampleFilterSettings()
    ordered = sorted(samples, key=lambda s: s.timestamp)
    if len(ordered) < settings.min_samples_to_filter:
        return ordered

    trimmed = trim_by_time(ordered, settings.trim_start_fraction, settings.trim_end_fraction)
    confident = [s for s in trimmed if s.confidence >= settings.confidence_threshold]
    return remove_outliers(confident, settings.mad_multiplier, settings.min_samples_to_filter)


def weighted_average(samples: Sequence[CalibrationSample]) -> ScreenPoint:
    """Confidence-weighted mean point; origin when there is no weight."""
    if not samples:
        return ScreenPoint(0.0, 0.0)
    points = _points_array(samples)
    weights = np.array([s.confidence for s in samples], dtype=float)
    total = float(weights.sum())
    if total <= 0.0:
        return ScreenPoint(0.0, 0.0)
    x, y = (points * weights[:, None]).sum(axis=0) / total
    return ScreenPoint(float(x), float(y))


def consistency(samples: Sequence[CalibrationSample], variance_scale: float = 0.001) -> float:
    """1 / (1 + variance * scale) of the spread around the mean point."""
    points = _points_array(samples)
    center = points.mean(axis=0)
    variance = float(((points - center) ** 2).sum(axis=1).mean())
    if variance <= 0.0:
        return 1.0
    return 1.0 / (1.0 + variance * variance_scale)


def data_quality(samples: Sequence[CalibrationSample], max_samples: int = 60) -> float:
    """
    Composite quality in [0, 1]:
    0.4 * mean confidence + 0.4 * consistency + 0.2 * min(1, n / max_samples)
    """
    if len(samples) < 2:
        return 0.0
    mean_confidence = float(np.mean([s.confidence for s in samples]))
    count_weight = min(1.0, len(samples) / float(max_samples))
    return mean_confidence * 0.4 + consistency(samples) * 0.4 + count_weight * 0.2


def weighted_centers(results: Sequence[CalibrationPointResult]) -> Tuple[ScreenPoint, ScreenPoint]:
    """
    Quality-weighted centers of the target points and of the raw points.

    Returns:
        (target_center, raw_center)
    """
    weights = np.array([r.quality for r in results], dtype=float)
    total = float(weights.sum())
    targets = np.array([r.target_point.as_tuple() for r in results], dtype=float)
    raws = np.array([r.raw_point.as_tuple() for r in results], dtype=float)
    tx, ty = (targets * weights[:, None]).sum(axis=0) / total
    rx, ry = (raws * weights[:, None]).sum(axis=0) / total
    return ScreenPoint(float(tx), float(ty)), ScreenPoint(float(rx), float(ry))


def fit_transform(
    results: Sequence[CalibrationPointResult],
    min_spread: float = 1e-6,
) -> CalibrationTransform:
    """
    Fit a per-axis scale + offset mapping raw points onto target points.

    Scale is the ratio of the weighted absolute spread of the targets to that
    of the raw points around their respective centers (1.0 when the raw
    spread on that axis is below `min_spread` pixels).
    """
    if not results:
        return CalibrationTransform.identity()

    target_center, raw_center = weighted_centers(results)

    weights = np.array([r.quality for r in results], dtype=float)
    targets = np.array([r.target_point.as_tuple() for r in results], dtype=float)
    raws = np.array([r.raw_point.as_tuple() for r in results], dtype=float)

    target_range = (np.abs(targets - np.array(target_center.as_tuple())) * weights[:, None]).sum(axis=0)
    raw_range = (np.abs(raws - np.array(raw_center.as_tuple())) * weights[:, None]).sum(axis=0)

    scale_x = float(target_range[0] / raw_range[0]) if raw_range[0] > min_spread else 1.0
    scale_y = float(target_range[1] / raw_range[1]) if raw_range[1] > min_spread else 1.0

    return CalibrationTransform(
        scale_x=scale_x,
        scale_y=scale_y,
        offset_x=target_center.x - raw_center.x * scale_x,
        offset_y=target_center.y - raw_center.y * scale_y,
    )
