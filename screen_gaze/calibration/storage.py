"""
Calibration persistence.

Stores the fitted transform (and optionally the per-target results) as JSON
so a working calibration survives restarts.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence
import json
import logging

from screen_gaze.calibration.statistics import CalibrationPointResult, CalibrationTransform
from screen_gaze.errors import InvalidConfigurationError


logger = logging.getLogger(__name__)


def save_calibration(
    transform: CalibrationTransform,
    path: str,
    results: Optional[Sequence[CalibrationPointResult]] = None,
    quality: Optional[float] = None,
) -> Path:
    """
    Save calibration data to a JSON file

    Args:
        transform: Transform to store
        path: Destination file (parent directories are created)
        results: Per-target results of the run that produced the transform
        quality: Overall quality of that run

    Returns:
        Path written
    """
    data: Dict[str, Any] = {
        "timestamp": datetime.now().isoformat(),
        **transform.to_dict(),
        "quality": None if quality is None else float(quality),
        "num_points": len(results or []),
        "points": [r.to_dict() for r in (results or [])],
    }

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, indent=2))
    logger.info(f"Calibration data saved to {p}")
    return p


def load_calibration(path: str) -> Optional[CalibrationTransform]:
    """
    Load a calibration transform from a JSON file

    Args:
        path: File written by save_calibration()

    Returns:
        The stored transform, or None if the file does not exist

    Raises:
        InvalidConfigurationError: If the file exists but cannot be parsed
    """
    p = Path(path)
    if not p.exists():
        logger.warning(f"Calibration file not found: {p}")
        return None

    try:
        data = json.loads(p.read_text())
        transform = CalibrationTransform(
            scale_x=float(data.get("scale_x", 1.0)),
            scale_y=float(data.get("scale_y", 1.0)),
            offset_x=float(data.get("offset_x", 0.0)),
            offset_y=float(data.get("offset_y", 0.0)),
        )
    except (ValueError, TypeError, AttributeError) as e:
        raise InvalidConfigurationError(f"Malformed calibration file {p}: {e}") from e

    logger.info(f"Calibration data loaded from {p}")
    return transform
