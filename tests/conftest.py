"""Pytest configuration shared across the suite."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def rotate(points: np.ndarray, deg: float, reflect: bool = False, shift=(0.0, 0.0)) -> np.ndarray:
    th = np.radians(deg)
    R = np.array([[np.cos(th), -np.sin(th)], [np.sin(th), np.cos(th)]])
    pts = np.asarray(points, float)
    if reflect:
        pts = pts * np.array([-1.0, 1.0])
    return pts @ R.T + np.asarray(shift, float)


def layout(points: np.ndarray, ids) -> pd.DataFrame:
    return pd.DataFrame(np.asarray(points, float), index=list(ids), columns=["dim1", "dim2"])


@pytest.fixture
def anchor_points() -> np.ndarray:
    # centroid at the origin, no document on it
    return np.array([[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0], [2.0, 2.0], [-2.0, -2.0]])


@pytest.fixture
def doc_ids():
    return ["doc_a", "doc_b", "doc_c", "doc_d", "doc_e", "doc_f"]


@pytest.fixture
def stretched_layouts(anchor_points, doc_ids):
    """Eight layouts; 'stretch' doubles every position, 'noise' is unrelated to geometry."""
    rng = np.random.default_rng(0)
    stretch = [0, 1, 0, 1, 0, 1, 0, 1]
    noise = [0, 0, 1, 1, 0, 0, 1, 1]
    layouts = []
    for i, s in enumerate(stretch):
        pts = anchor_points * (2.0 if s else 1.0) + rng.normal(0.0, 1e-3, size=anchor_points.shape)
        pts = rotate(pts, deg=37.0 * i, shift=(i, -i))
        order = rng.permutation(len(doc_ids))
        layouts.append(layout(pts[order], [doc_ids[k] for k in order]))
    choices = pd.DataFrame({"stretch": stretch, "noise": noise})
    return layouts, choices
