"""Array-backed storage of methylation values for sites across samples."""

import os
from typing import Sequence

# Third party modules
import numpy as np

from methodical.exceptions import DimensionMismatch


class MethylationMatrix:
    """Stores methylation values for genomic sites (rows) across samples (columns).

    Sites are grouped by chromosome (in order of first appearance) and sorted
    by position within each chromosome, so every chromosome occupies one
    contiguous block of rows. The values array is read-only and may be shared
    between threads processing different anchors.
    """

    def __init__(
        self,
        seqnames: Sequence[str],
        positions: Sequence[int],
        values,
        sample_names: Sequence[str],
        verbose: bool = False,
    ):
        """Initialize the methylation matrix.

        Args
        ----------
        seqnames : Sequence[str]
            The chromosome of each site, e.g. "chr1".
        positions : Sequence[int]
            The position of each site.
        values : array-like
            Methylation values of shape (sites, samples); NaN marks missing values.
        sample_names : Sequence[str]
            The name of each sample (column).
        verbose : bool, optional
            Verbose output.

        Raises
        -------
        DimensionMismatch
            If the site annotations, values and sample names disagree in shape.
        ValueError
            If a chromosome contains the same position twice.
        """
        self.verbose = verbose
        seqnames = np.asarray(seqnames, dtype=str)
        positions = np.asarray(positions, dtype=np.int64)
        values = np.array(values, dtype=float)
        self.sample_names: list[str] = [str(s) for s in sample_names]
        if values.size == 0 and len(positions) == 0:
            values = values.reshape(0, len(self.sample_names))

        if seqnames.shape != positions.shape or seqnames.ndim != 1:
            raise DimensionMismatch("seqnames and positions must be 1-D and equal length")
        if values.shape != (len(positions), len(self.sample_names)):
            raise DimensionMismatch(
                f"values has shape {values.shape}, expected "
                f"({len(positions)}, {len(self.sample_names)})"
            )
        if len(set(self.sample_names)) != len(self.sample_names):
            raise ValueError("Sample names must be unique")

        # Chromosomes in order of first appearance
        _, first_seen = np.unique(seqnames, return_index=True)
        self.chromosomes: list[str] = [str(seqnames[i]) for i in sorted(first_seen)]
        self.chromosomes_dict: dict[str, int] = {
            ch: idx for idx, ch in enumerate(self.chromosomes)
        }

        # Sort sites by chromosome, then position
        chrom_rank = np.array([self.chromosomes_dict[ch] for ch in seqnames], dtype=int)
        order = np.lexsort((positions, chrom_rank))
        chrom_rank = chrom_rank[order]
        self.positions: np.ndarray = positions[order]
        self.values: np.ndarray = values[order]
        self.positions.flags.writeable = False
        self.values.flags.writeable = False

        # Add up the number of sites per chromosome, e.g. chr1, then chr1+chr2, etc.
        self.sites_per_chr_cumsum: np.ndarray = np.cumsum(
            np.bincount(chrom_rank, minlength=len(self.chromosomes))
        )

        for ch in self.chromosomes:
            chrom_positions = self.site_positions(ch)
            if np.any(np.diff(chrom_positions) == 0):
                raise ValueError(f"Duplicate site positions found on {ch}")

        self.total_sites = len(self.positions)
        if self.verbose:
            print(
                f"\tLoaded {self.total_sites:,} sites on {len(self.chromosomes)} "
                f"chromosomes for {len(self.sample_names)} samples."
            )

    def _chromosome_bounds(self, seqname: str) -> tuple[int, int]:
        """Return the (first, last + 1) row indices of a chromosome."""
        chr_index = self.chromosomes_dict[seqname]
        start = 0 if chr_index == 0 else int(self.sites_per_chr_cumsum[chr_index - 1])
        return start, int(self.sites_per_chr_cumsum[chr_index])

    def site_positions(self, seqname: str) -> np.ndarray:
        """Ordered positions of all sites on a chromosome (empty if unknown)."""
        if seqname not in self.chromosomes_dict:
            return np.empty(0, dtype=np.int64)
        start, end = self._chromosome_bounds(seqname)
        return self.positions[start:end]

    def window(self, seqname: str, start: int, end: int) -> tuple[np.ndarray, np.ndarray]:
        """Return the sites within [start, end] on a chromosome.

        Args
        ----------
        seqname : str
            The chromosome, e.g. "chr1"
        start : int
            First position of the window (inclusive).
        end : int
            Last position of the window (inclusive).

        Returns
        -------
        tuple:
            (positions, values) read-only views, values of shape (sites, samples).
        """
        if seqname not in self.chromosomes_dict:
            return np.empty(0, dtype=np.int64), np.empty((0, len(self.sample_names)))
        chrom_start, _ = self._chromosome_bounds(seqname)
        chrom_positions = self.site_positions(seqname)
        first = chrom_start + np.searchsorted(chrom_positions, start, side="left")
        last = chrom_start + np.searchsorted(chrom_positions, end, side="right")
        return self.positions[first:last], self.values[first:last]

    def column_indices(self, sample_names: Sequence[str]) -> np.ndarray:
        """Return the column index of each named sample.

        Raises
        -------
        KeyError
            If a sample is not in the matrix.
        """
        lookup = {name: idx for idx, name in enumerate(self.sample_names)}
        return np.array([lookup[str(name)] for name in sample_names], dtype=int)

    def save_npz(self, path: str) -> None:
        """Save the matrix to a compressed .npz file."""
        seqnames = np.repeat(
            np.array(self.chromosomes, dtype=str),
            np.diff(np.concatenate([[0], self.sites_per_chr_cumsum])),
        )
        if self.verbose:
            print(f"\tSaving methylation matrix to: {path}")
        np.savez_compressed(
            path,
            seqnames=seqnames,
            positions=self.positions,
            values=self.values,
            sample_names=np.array(self.sample_names, dtype=str),
        )

    @classmethod
    def load_npz(cls, path: str, verbose: bool = False) -> "MethylationMatrix":
        """Load a matrix saved with save_npz.

        Raises
        -------
        FileNotFoundError
            If the file cannot be read.
        """
        if not os.access(path, os.R_OK):
            raise FileNotFoundError("Cannot read methylation matrix: " + os.path.abspath(path))
        if verbose:
            print(f"\tReading methylation matrix from: {path}")
        with np.load(path, allow_pickle=False) as data:
            return cls(
                seqnames=data["seqnames"],
                positions=data["positions"],
                values=data["values"],
                sample_names=data["sample_names"],
                verbose=verbose,
            )
