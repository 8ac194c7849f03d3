"""Rapid correlation and significance testing between the columns of two tables."""

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

# Third party modules
import numpy as np

from scipy import stats
from statsmodels.stats.multitest import multipletests

from methodical.exceptions import DimensionMismatch, InvalidMethod


COR_METHODS = ("pearson", "spearman")

# R's p.adjust.methods -> statsmodels multipletests method names
P_ADJUST_METHODS = {
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "hommel": "hommel",
    "bonferroni": "bonferroni",
    "BH": "fdr_bh",
    "BY": "fdr_by",
    "fdr": "fdr_bh",
    "none": None,
}

# |r| this close to 1 is treated as exactly 1 (floating point noise from centering)
_UNIT_CORRELATION_TOLERANCE = 1e-12


@dataclass(frozen=True)
class PairCorrelation:
    """Correlation between one column of table1 and one column of table2."""

    feature1: str
    feature2: str
    cor: float
    p_val: float
    q_val: Optional[float]
    n_obs: int


@dataclass(frozen=True)
class CorrelationTable:
    """Flat result of rapid_cor_test.

    Arrays are ordered by table1 column, then table2 column, so entry
    ``i * len(table2 columns) + j`` holds the pair (table1[i], table2[j]).
    Undefined statistics are NaN.
    """

    table1_name: str
    table2_name: str
    feature1: tuple
    feature2: tuple
    cor: np.ndarray
    p_val: np.ndarray
    q_val: Optional[np.ndarray]
    n_obs: np.ndarray

    def __len__(self) -> int:
        return len(self.cor)

    def __iter__(self) -> Iterator[PairCorrelation]:
        for idx in range(len(self)):
            yield PairCorrelation(
                feature1=self.feature1[idx],
                feature2=self.feature2[idx],
                cor=float(self.cor[idx]),
                p_val=float(self.p_val[idx]),
                q_val=None if self.q_val is None else float(self.q_val[idx]),
                n_obs=int(self.n_obs[idx]),
            )

    def get(self, feature1: str, feature2: str) -> PairCorrelation:
        """Return the record for a named pair of features."""
        for record in self:
            if record.feature1 == feature1 and record.feature2 == feature2:
                return record
        raise KeyError((feature1, feature2))


def match_cor_method(cor_method: str) -> str:
    """Resolve a (possibly abbreviated) correlation method name.

    Raises
    -------
    InvalidMethod
        If cor_method does not uniquely identify "pearson" or "spearman".
    """
    matches = [m for m in COR_METHODS if cor_method and m.startswith(cor_method)]
    if len(matches) != 1:
        raise InvalidMethod(
            f"cor_method should be one of {', '.join(COR_METHODS)}, not {cor_method!r}"
        )
    return matches[0]


def p_adjust(p_values, method: str = "BH") -> np.ndarray:
    """Adjust p-values for multiple testing, like R's p.adjust.

    Missing p-values are ignored when counting tests and stay missing.

    Args
    -------
        p_values: Sequence of p-values (NaN allowed).
        method: One of P_ADJUST_METHODS.

    Returns
    -------
        Array of adjusted p-values (a copy of p_values for method "none").
    """
    if method not in P_ADJUST_METHODS:
        raise InvalidMethod(
            f"p_adjust_method should be one of {', '.join(P_ADJUST_METHODS)}, not {method!r}"
        )
    p_values = np.asarray(p_values, dtype=float)
    adjusted = np.full_like(p_values, np.nan)
    valid_mask = ~np.isnan(p_values)

    if P_ADJUST_METHODS[method] is None:
        adjusted[valid_mask] = p_values[valid_mask]
        return adjusted
    if not np.any(valid_mask):
        return adjusted

    _, adjusted[valid_mask], _, _ = multipletests(
        p_values[valid_mask], method=P_ADJUST_METHODS[method]
    )
    return adjusted


def _as_table(table, names: Optional[Sequence[str]]) -> tuple[np.ndarray, list[str]]:
    """Coerce a table to a 2-D float array (rows = samples) with column names."""
    array = np.asarray(table, dtype=float)
    if array.ndim == 1:
        array = array[:, np.newaxis]
    if array.ndim != 2:
        raise DimensionMismatch(f"Expected a 2-D table, got {array.ndim} dimensions")

    if names is None:
        names = [str(i) for i in range(array.shape[1])]
    names = [str(name) for name in names]
    if len(names) != array.shape[1]:
        raise DimensionMismatch(
            f"Got {len(names)} names for a table with {array.shape[1]} columns"
        )
    return array, names


def _cor_with_vector(
    x: np.ndarray, x_mask: np.ndarray, y: np.ndarray, y_mask: np.ndarray
) -> np.ndarray:
    """Pearson correlation of every column of x with the vector y.

    Only rows where both values are present are used for each column.
    """
    mask = x_mask & y_mask[:, np.newaxis]
    n_obs = mask.sum(axis=0)
    y_wide = np.broadcast_to(y[:, np.newaxis], x.shape)

    with np.errstate(divide="ignore", invalid="ignore"):
        x_mean = np.where(mask, x, 0.0).sum(axis=0) / n_obs
        y_mean = np.where(mask, y_wide, 0.0).sum(axis=0) / n_obs
        x_centered = np.where(mask, x - x_mean, 0.0)
        y_centered = np.where(mask, y_wide - y_mean, 0.0)
        cors = (x_centered * y_centered).sum(axis=0) / np.sqrt(
            (x_centered**2).sum(axis=0) * (y_centered**2).sum(axis=0)
        )
    return cors


def _spearman_with_missing(
    x: np.ndarray, x_mask: np.ndarray, y: np.ndarray, y_mask: np.ndarray
) -> np.ndarray:
    """Spearman correlations when ranks depend on the complete pairs of each column pair."""
    cors = np.full((x.shape[1], y.shape[1]), np.nan)
    for j in range(y.shape[1]):
        for i in range(x.shape[1]):
            complete = x_mask[:, i] & y_mask[:, j]
            if complete.sum() < 2:
                continue
            x_ranks = stats.rankdata(x[complete, i])[:, np.newaxis]
            y_ranks = stats.rankdata(y[complete, j])
            cors[i, j] = _cor_with_vector(
                x_ranks,
                np.ones_like(x_ranks, dtype=bool),
                y_ranks,
                np.ones_like(y_ranks, dtype=bool),
            )[0]
    return cors


def pairwise_correlations(
    x: np.ndarray, y: np.ndarray, cor_method: str = "pearson"
) -> tuple[np.ndarray, np.ndarray]:
    """Correlate every column of x with every column of y using complete pairs.

    Returns
    -------
        (cors, n_obs): two arrays of shape (x columns, y columns).
    """
    cor_method = match_cor_method(cor_method)
    x_mask = ~np.isnan(x)
    y_mask = ~np.isnan(y)
    n_obs = x_mask.T.astype(int) @ y_mask.astype(int)

    if cor_method == "spearman":
        if not (x_mask.all() and y_mask.all()):
            return _spearman_with_missing(x, x_mask, y, y_mask), n_obs
        x = stats.rankdata(x, axis=0)
        y = stats.rankdata(y, axis=0)

    cors = np.empty((x.shape[1], y.shape[1]))
    for j in range(y.shape[1]):
        cors[:, j] = _cor_with_vector(x, x_mask, y[:, j], y_mask[:, j])
    return cors, n_obs


def cor_p_values(cors, n_obs, n_covariates: int = 0) -> tuple[np.ndarray, np.ndarray]:
    """Two-sided p-values for correlations from a Student t approximation.

    The degrees of freedom are n_obs - 2 - n_covariates. p-values are NaN when
    the correlation is undefined, exactly +/-1, or the degrees of freedom are
    not positive.

    Returns
    -------
        (cors, p_values): correlations snapped to +/-1 where within floating
        point noise of it, and the matching p-values.
    """
    cors = np.clip(np.asarray(cors, dtype=float), -1.0, 1.0)
    degrees_of_freedom = np.asarray(n_obs) - 2 - n_covariates

    unit = np.abs(np.abs(cors) - 1.0) < _UNIT_CORRELATION_TOLERANCE
    cors = np.where(unit, np.sign(cors), cors)

    with np.errstate(divide="ignore", invalid="ignore"):
        t_stat = cors * np.sqrt(degrees_of_freedom) / np.sqrt(1 - cors**2)
        p_values = 2 * stats.t.sf(np.abs(t_stat), df=degrees_of_freedom)

    undefined = np.isnan(cors) | unit | (degrees_of_freedom <= 0)
    p_values = np.where(undefined, np.nan, np.minimum(p_values, 1.0))
    return cors, p_values


def rapid_cor_test(
    table1,
    table2,
    cor_method: str = "pearson",
    table1_name: str = "table1",
    table2_name: str = "table2",
    p_adjust_method: str = "BH",
    n_covariates: int = 0,
    table1_features: Optional[Sequence[str]] = None,
    table2_features: Optional[Sequence[str]] = None,
) -> CorrelationTable:
    """Rapidly calculate the correlation and significance of pairs of columns from two tables.

    Args
    -------
        table1: Array-like of shape (samples, features). A 1-D array is one feature.
        table2: Array-like with the same number of rows (samples) as table1.
        cor_method: "pearson" or "spearman" (or an unambiguous abbreviation).
        table1_name: Label for the table1 feature identifiers.
        table2_name: Label for the table2 feature identifiers.
        p_adjust_method: Method used to compute q-values (see P_ADJUST_METHODS).
            "none" skips q-values entirely.
        n_covariates: Number of covariates when testing partial correlations.
            Reduces the degrees of freedom of every test.
        table1_features: Column names for table1. Defaults to "0", "1", ...
        table2_features: Column names for table2. Defaults to "0", "1", ...

    Returns
    -------
        A CorrelationTable with one entry per (table1 column, table2 column) pair.

    Raises
    -------
        DimensionMismatch: If the tables have different numbers of rows.
        InvalidMethod: If cor_method or p_adjust_method is not recognized.
        ValueError: If n_covariates is negative.
    """
    cor_method = match_cor_method(cor_method)
    if p_adjust_method not in P_ADJUST_METHODS:
        raise InvalidMethod(
            f"p_adjust_method should be one of {', '.join(P_ADJUST_METHODS)}, not {p_adjust_method!r}"
        )
    if n_covariates < 0:
        raise ValueError("n_covariates cannot be negative")

    x, x_names = _as_table(table1, table1_features)
    y, y_names = _as_table(table2, table2_features)

    # Check that the number of rows in table1 and table2 are equal
    if x.shape[0] != y.shape[0]:
        raise DimensionMismatch(
            f"Number of rows of table1 ({x.shape[0]}) and table2 ({y.shape[0]}) must be equal"
        )

    cors, n_obs = pairwise_correlations(x, y, cor_method)
    cors, p_values = cor_p_values(cors, n_obs, n_covariates)

    # Flatten in table1-major order
    cors = cors.ravel()
    p_values = p_values.ravel()
    q_values = None
    if p_adjust_method != "none":
        q_values = p_adjust(p_values, p_adjust_method)

    return CorrelationTable(
        table1_name=table1_name,
        table2_name=table2_name,
        feature1=tuple(name for name in x_names for _ in y_names),
        feature2=tuple(y_names) * len(x_names),
        cor=cors,
        p_val=p_values,
        q_val=q_values,
        n_obs=n_obs.ravel(),
    )
