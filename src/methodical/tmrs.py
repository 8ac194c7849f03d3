"""Find TMRs: runs of sites whose methodical scores breach a significance threshold."""

from dataclasses import dataclass
from typing import Iterable, Union

# Third party modules
import numpy as np

from methodical.anchor import AnchorCorrelations, AnchorOutcome
from methodical.scoring import (
    DEFAULT_OFFSET_LENGTH,
    DEFAULT_SMOOTHING_FACTOR,
    ScoreSeries,
    calculate_scores,
    exponential_smooth,
)


POSITIVE = "positive"
NEGATIVE = "negative"

TMR_FIELDS = (
    "seqname",
    "start",
    "end",
    "direction",
    "site_count",
    "distance_to_anchor",
    "anchor_location",
    "name",
)


@dataclass(frozen=True)
class TMR:
    """A transcript-associated methylation region.

    start and end are the positions of the outermost significant sites.
    site_count counts every site within [start, end], significant or not.
    """

    seqname: str
    start: int
    end: int
    direction: str
    site_count: int
    distance_to_anchor: int
    anchor_location: str
    anchor_name: str
    name: str

    def as_row(self) -> tuple:
        """Values in TMR_FIELDS order."""
        return tuple(getattr(self, field) for field in TMR_FIELDS)


def score_threshold(p_value_threshold: float) -> float:
    """The methodical score equivalent to a p-value threshold."""
    if not 0 < p_value_threshold < 1:
        raise ValueError("p_value_threshold must be between 0 and 1")
    return float(-np.log10(p_value_threshold))


def _significant_runs(directions: np.ndarray) -> list[tuple[int, int, int]]:
    """Maximal runs of equal non-zero direction codes as (direction, first, last) indices."""
    runs = []
    run_start = None
    for idx, code in enumerate(directions):
        if run_start is not None and code != directions[run_start]:
            runs.append((int(directions[run_start]), run_start, idx - 1))
            run_start = None
        if run_start is None and code != 0:
            run_start = idx
    if run_start is not None:
        runs.append((int(directions[run_start]), run_start, len(directions) - 1))
    return runs


def _merge_runs(
    runs: list[tuple[int, int, int]], positions: np.ndarray, min_gapwidth: int
) -> list[tuple[int, int, int]]:
    """Chain-merge same-direction runs separated by at most min_gapwidth bp.

    The gap is the number of bases strictly between the last site of one run
    and the first site of the next run of the same direction.
    """
    merged = []
    for direction in (1, -1):
        current = None
        for run in (r for r in runs if r[0] == direction):
            if current is not None:
                gap = positions[run[1]] - positions[current[2]] - 1
                if gap <= min_gapwidth:
                    current = (direction, current[1], run[2])
                    continue
                merged.append(current)
            current = run
        if current is not None:
            merged.append(current)
    return sorted(merged, key=lambda r: (r[1], r[2]))


def find_tmrs(
    scores: Union[ScoreSeries, AnchorCorrelations],
    p_value_threshold: float = 0.005,
    smooth: bool = True,
    offset_length: int = DEFAULT_OFFSET_LENGTH,
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
    min_meth_sites: int = 5,
    min_gapwidth: int = 150,
) -> list[TMR]:
    """Identify TMRs around an anchor.

    A site is significant in the positive direction when its score is at
    least -log10(p_value_threshold), and in the negative direction when its
    score is at most log10(p_value_threshold). Boundary values count as
    significant. Runs of consecutive sites significant in the same direction
    form candidate TMRs; undefined scores break runs. Candidates of the same
    direction less than min_gapwidth + 1 bp apart are merged, and TMRs with
    fewer than min_meth_sites sites are dropped.

    Args
    -------
        scores: A ScoreSeries, or AnchorCorrelations to score first.
        p_value_threshold: p-value equivalent of the score threshold.
        smooth: Call TMRs on exponentially smoothed scores instead of raw scores.
        offset_length: Sites on each side included when smoothing.
        smoothing_factor: Decay of smoothing weights per site, in (0, 1].
        min_meth_sites: Minimum number of sites within a TMR.
        min_gapwidth: Maximum gap in bp between merged candidates.

    Returns
    -------
        TMRs ordered by start position; empty if no site is significant.
    """
    if isinstance(scores, AnchorCorrelations):
        scores = calculate_scores(scores)
    if min_meth_sites < 0 or min_gapwidth < 0:
        raise ValueError("min_meth_sites and min_gapwidth cannot be negative")
    threshold = score_threshold(p_value_threshold)

    values = scores.raw
    if smooth:
        values = exponential_smooth(scores.raw, offset_length, smoothing_factor)

    with np.errstate(invalid="ignore"):
        directions = np.where(
            values >= threshold, 1, np.where(values <= -threshold, -1, 0)
        )

    positions = scores.positions
    runs = _merge_runs(_significant_runs(directions), positions, min_gapwidth)

    anchor = scores.anchor
    tmrs = []
    for direction, first, last in runs:
        start, end = int(positions[first]), int(positions[last])
        site_count = int(
            np.searchsorted(positions, end, side="right")
            - np.searchsorted(positions, start, side="left")
        )
        if site_count < min_meth_sites:
            continue
        members = directions[first : last + 1] == direction
        member_distances = scores.distances[first : last + 1][members]
        tmrs.append(
            TMR(
                seqname=anchor.seqname,
                start=start,
                end=end,
                direction=POSITIVE if direction == 1 else NEGATIVE,
                site_count=site_count,
                distance_to_anchor=int(
                    member_distances.max() if direction == 1 else member_distances.min()
                ),
                anchor_location=anchor.location,
                anchor_name=anchor.name,
                name=f"{anchor.name}_tmr_{len(tmrs) + 1}",
            )
        )
    return tmrs


def find_tmrs_batch(
    outcomes: Iterable[AnchorOutcome],
    p_value_threshold: float = 0.005,
    smooth: bool = True,
    offset_length: int = DEFAULT_OFFSET_LENGTH,
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
    min_meth_sites: int = 5,
    min_gapwidth: int = 150,
) -> list[TMR]:
    """Find TMRs for every successfully processed anchor, in anchor order."""
    tmrs = []
    for outcome in outcomes:
        if not outcome.ok:
            continue
        tmrs.extend(
            find_tmrs(
                outcome.correlations,
                p_value_threshold=p_value_threshold,
                smooth=smooth,
                offset_length=offset_length,
                smoothing_factor=smoothing_factor,
                min_meth_sites=min_meth_sites,
                min_gapwidth=min_gapwidth,
            )
        )
    return tmrs
