"""Methodical scores: signed significance of site correlations and their smoothing."""

from dataclasses import dataclass, replace
from typing import Optional

# Third party modules
import numpy as np

from methodical.anchor import AnchorCorrelations
from methodical.window import Anchor


DEFAULT_OFFSET_LENGTH = 10
DEFAULT_SMOOTHING_FACTOR = 0.75


@dataclass(frozen=True)
class ScoreSeries:
    """Methodical scores of the sites around one anchor, in genomic order.

    smoothed is None until exponential smoothing has been applied.
    """

    anchor: Anchor
    positions: np.ndarray
    distances: np.ndarray
    raw: np.ndarray
    smoothed: Optional[np.ndarray] = None

    @property
    def seqname(self) -> str:
        return self.anchor.seqname

    def __len__(self) -> int:
        return len(self.positions)


def methodical_scores(cors, p_values) -> np.ndarray:
    """Convert correlations and p-values to methodical scores, -sign(r) * log10(p).

    Undefined p-values give undefined (NaN) scores. p-values of 0 are clipped to
    the smallest positive float so scores stay finite.
    """
    cors = np.asarray(cors, dtype=float)
    p_values = np.asarray(p_values, dtype=float)
    with np.errstate(invalid="ignore"):
        clipped = np.where(np.isnan(p_values), np.nan, np.maximum(p_values, np.finfo(float).tiny))
        return -np.sign(cors) * np.log10(clipped)


def exponential_smooth(
    scores,
    offset_length: int = DEFAULT_OFFSET_LENGTH,
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
) -> np.ndarray:
    """Exponentially weighted moving average of scores over neighbouring sites.

    The smoothed value of site i is the weighted mean of the defined scores at
    sites i - offset_length to i + offset_length (clipped at the ends), weighted
    by smoothing_factor ** |distance in sites|. It is NaN when every score in
    the window is undefined.

    Raises
    -------
    ValueError
        If offset_length is negative or smoothing_factor is not in (0, 1].
    """
    if offset_length < 0:
        raise ValueError("offset_length cannot be negative")
    if not 0 < smoothing_factor <= 1:
        raise ValueError("smoothing_factor must be greater than 0 and at most 1")

    scores = np.asarray(scores, dtype=float)
    if scores.size == 0:
        return scores.copy()

    weights = smoothing_factor ** np.abs(np.arange(-offset_length, offset_length + 1))
    padded = np.pad(scores, offset_length, constant_values=np.nan)
    windows = np.lib.stride_tricks.sliding_window_view(padded, 2 * offset_length + 1)

    defined = ~np.isnan(windows)
    numerator = np.where(defined, windows * weights, 0.0).sum(axis=1)
    denominator = np.where(defined, weights, 0.0).sum(axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(denominator > 0, numerator / denominator, np.nan)


def calculate_scores(correlations: AnchorCorrelations) -> ScoreSeries:
    """Methodical scores for the sites around an anchor, without smoothing."""
    return ScoreSeries(
        anchor=correlations.anchor,
        positions=correlations.positions,
        distances=correlations.distances,
        raw=methodical_scores(correlations.cor, correlations.p_val),
    )


def calculate_smoothed_scores(
    correlations: AnchorCorrelations,
    offset_length: int = DEFAULT_OFFSET_LENGTH,
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
) -> ScoreSeries:
    """Methodical scores for the sites around an anchor plus their smoothed values."""
    series = calculate_scores(correlations)
    return replace(
        series, smoothed=exponential_smooth(series.raw, offset_length, smoothing_factor)
    )
