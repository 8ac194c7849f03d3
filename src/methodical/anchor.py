"""Correlate methylation sites around anchors with the anchor's paired feature."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Sequence

# Third party modules
import numpy as np

from tqdm import tqdm

from methodical.correlation import P_ADJUST_METHODS, match_cor_method, rapid_cor_test
from methodical.exceptions import (
    InsufficientSamples,
    InvalidMethod,
    MethodicalError,
    NoSitesInWindow,
)
from methodical.matrix import MethylationMatrix
from methodical.window import Anchor, select_window


MIN_SHARED_SAMPLES = 3


@dataclass(frozen=True)
class CorrelationRecord:
    """Correlation of one methylation site with an anchor's feature."""

    seqname: str
    position: int
    cor: float
    p_val: float
    q_val: Optional[float]
    distance_to_anchor: int


@dataclass(frozen=True)
class AnchorCorrelations:
    """Site correlations around one anchor, ordered by position.

    Undefined correlations and p-values are NaN. q_val is None when no
    multiple testing adjustment was requested.
    """

    anchor: Anchor
    positions: np.ndarray
    cor: np.ndarray
    p_val: np.ndarray
    q_val: Optional[np.ndarray]
    distances: np.ndarray
    n_samples: int

    @property
    def seqname(self) -> str:
        return self.anchor.seqname

    def __len__(self) -> int:
        return len(self.positions)

    def __iter__(self) -> Iterator[CorrelationRecord]:
        for idx in range(len(self)):
            yield CorrelationRecord(
                seqname=self.seqname,
                position=int(self.positions[idx]),
                cor=float(self.cor[idx]),
                p_val=float(self.p_val[idx]),
                q_val=None if self.q_val is None else float(self.q_val[idx]),
                distance_to_anchor=int(self.distances[idx]),
            )


@dataclass(frozen=True)
class AnchorOutcome:
    """Result of processing one anchor in a batch: correlations or the error that stopped it."""

    anchor: Anchor
    correlations: Optional[AnchorCorrelations] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.correlations is not None


def compute_anchor_correlations(
    matrix: MethylationMatrix,
    feature_values: Mapping[str, float],
    anchor: Anchor,
    upstream: Optional[int] = None,
    downstream: Optional[int] = None,
    cor_method: str = "pearson",
    p_adjust_method: str = "BH",
    n_covariates: int = 0,
) -> AnchorCorrelations:
    """Correlate the methylation of sites around an anchor with the anchor's feature.

    Args
    -------
        matrix: The methylation matrix.
        feature_values: Feature (e.g. transcript expression) value per sample name.
            Samples missing from the matrix or with a NaN value are ignored.
        anchor: The anchor (e.g. a TSS).
        upstream: bp upstream of the anchor to include (see select_window).
        downstream: bp downstream of the anchor to include (see select_window).
        cor_method: "pearson" or "spearman".
        p_adjust_method: Multiple testing correction across the window's sites.
        n_covariates: Number of covariates for partial correlations.

    Returns
    -------
        An AnchorCorrelations with one entry per site in the window.

    Raises
    -------
        NoSitesInWindow: If no sites fall within the window.
        InsufficientSamples: If fewer than 3 samples are shared by the matrix
            and feature_values.
    """
    window = select_window(
        matrix.site_positions(anchor.seqname), anchor, upstream, downstream
    )
    if len(window) == 0:
        raise NoSitesInWindow(
            f"No sites within {window.start}-{window.end} around {anchor.name} ({anchor.location})"
        )

    shared_samples = [
        s
        for s in matrix.sample_names
        if s in feature_values and not np.isnan(float(feature_values[s]))
    ]
    if len(shared_samples) < MIN_SHARED_SAMPLES:
        raise InsufficientSamples(
            f"Only {len(shared_samples)} samples shared between the methylation matrix "
            f"and the feature for {anchor.name}; at least {MIN_SHARED_SAMPLES} required"
        )

    positions, values = matrix.window(anchor.seqname, window.start, window.end)
    site_values = values[:, matrix.column_indices(shared_samples)].T
    feature_vector = np.array([feature_values[s] for s in shared_samples], dtype=float)

    cor_table = rapid_cor_test(
        site_values,
        feature_vector,
        cor_method=cor_method,
        table1_name="meth_site",
        table2_name="feature",
        p_adjust_method=p_adjust_method,
        n_covariates=n_covariates,
        table2_features=[anchor.name],
    )

    return AnchorCorrelations(
        anchor=anchor,
        positions=positions,
        cor=cor_table.cor,
        p_val=cor_table.p_val,
        q_val=cor_table.q_val,
        distances=window.distances,
        n_samples=len(shared_samples),
    )


def compute_anchor_correlations_batch(
    matrix: MethylationMatrix,
    anchors: Sequence[Anchor],
    feature_table: Mapping[str, Mapping[str, float]],
    upstream: Optional[int] = None,
    downstream: Optional[int] = None,
    cor_method: str = "pearson",
    p_adjust_method: str = "BH",
    n_covariates: int = 0,
    n_workers: int = 1,
    verbose: bool = False,
) -> dict[str, AnchorOutcome]:
    """Compute correlations for many anchors, optionally in parallel.

    Each anchor is processed independently. Errors raised while processing
    one anchor (NoSitesInWindow, InsufficientSamples or a ValueError from bad
    per-anchor data) are recorded on the anchor's outcome instead of stopping
    the batch.

    Args
    -------
        matrix: The methylation matrix (shared read-only between workers).
        anchors: Anchors to process. Names must be unique.
        feature_table: Per-sample feature values keyed by anchor name.
        n_workers: Maximum number of anchors processed concurrently.
        verbose: Show a progress bar and skipped anchors.

    Returns
    -------
        A dict of anchor name -> AnchorOutcome, in the order of anchors.

    Raises
    -------
        InvalidMethod: If cor_method or p_adjust_method is not recognized.
        ValueError: If anchor names are not unique, the window extents are
            negative or n_workers < 1.
    """
    # Fail fast on configuration errors before fanning out
    match_cor_method(cor_method)
    if p_adjust_method not in P_ADJUST_METHODS:
        raise InvalidMethod(f"Unrecognized p_adjust_method: {p_adjust_method!r}")
    if n_covariates < 0:
        raise ValueError("n_covariates cannot be negative")
    if any(extent is not None and extent < 0 for extent in (upstream, downstream)):
        raise ValueError("Window extents cannot be negative")
    if n_workers < 1:
        raise ValueError("n_workers must be at least 1")
    names = [anchor.name for anchor in anchors]
    if len(set(names)) != len(names):
        raise ValueError("Anchor names must be unique")

    def process_anchor(anchor: Anchor) -> AnchorOutcome:
        try:
            correlations = compute_anchor_correlations(
                matrix,
                feature_table.get(anchor.name, {}),
                anchor,
                upstream=upstream,
                downstream=downstream,
                cor_method=cor_method,
                p_adjust_method=p_adjust_method,
                n_covariates=n_covariates,
            )
        except (MethodicalError, ValueError) as e:
            if verbose:
                tqdm.write(f"\tSkipping {anchor.name}: {e}")
            return AnchorOutcome(anchor=anchor, error=e)
        return AnchorOutcome(anchor=anchor, correlations=correlations)

    outcomes: dict[str, AnchorOutcome] = {}
    if n_workers == 1:
        for anchor in tqdm(anchors, disable=not verbose, desc="Anchors"):
            outcomes[anchor.name] = process_anchor(anchor)
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = {executor.submit(process_anchor, anchor): anchor for anchor in anchors}
            for future in tqdm(
                as_completed(futures),
                total=len(futures),
                disable=not verbose,
                desc="Anchors",
            ):
                outcomes[futures[future].name] = future.result()

    # Anchor order, not completion order
    return {name: outcomes[name] for name in names}
