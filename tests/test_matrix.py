import numpy as np
import pytest
from methodical.exceptions import DimensionMismatch
from methodical.matrix import MethylationMatrix


# Deliberately unsorted input
TEST_MATRIX = MethylationMatrix(
    seqnames=["chr2", "chr1", "chr1", "chr2", "chr1"],
    positions=[50, 300, 100, 10, 200],
    values=[
        [0.5, 0.6, 0.7],
        [0.3, np.nan, 0.1],
        [0.1, 0.2, 0.3],
        [0.9, 0.8, 0.7],
        [0.2, 0.2, 0.2],
    ],
    sample_names=["s1", "s2", "s3"],
    verbose=True,
)


def test_sites_are_sorted() -> None:
    """Sites are grouped by chromosome (first appearance) and sorted by position."""

    assert TEST_MATRIX.chromosomes == ["chr2", "chr1"]
    assert TEST_MATRIX.total_sites == 5
    assert list(TEST_MATRIX.site_positions("chr2")) == [10, 50]
    assert list(TEST_MATRIX.site_positions("chr1")) == [100, 200, 300]
    assert list(TEST_MATRIX.values[0]) == [0.9, 0.8, 0.7]
    assert TEST_MATRIX.sites_per_chr_cumsum[-1] == TEST_MATRIX.total_sites


def test_unknown_chromosome() -> None:
    """Unknown chromosomes have no sites."""

    assert len(TEST_MATRIX.site_positions("chrX")) == 0
    positions, values = TEST_MATRIX.window("chrX", 0, 1000)
    assert len(positions) == 0
    assert values.shape == (0, 3)


def test_window() -> None:
    """Windows are inclusive at both ends and stay on one chromosome."""

    positions, values = TEST_MATRIX.window("chr1", 100, 200)
    assert list(positions) == [100, 200]
    assert values.shape == (2, 3)
    assert values[0, 2] == pytest.approx(0.3)

    positions, values = TEST_MATRIX.window("chr1", 201, 10_000)
    assert list(positions) == [300]
    assert np.isnan(values[0, 1])


def test_values_are_read_only() -> None:
    """Windows are views that cannot be modified."""

    _, values = TEST_MATRIX.window("chr1", 0, 1000)
    with pytest.raises(ValueError):
        values[0, 0] = 1.0


def test_column_indices() -> None:
    """Test column_indices."""

    assert list(TEST_MATRIX.column_indices(["s3", "s1"])) == [2, 0]
    with pytest.raises(KeyError):
        TEST_MATRIX.column_indices(["s4"])


def test_save_and_load_npz(tmp_path) -> None:
    """A saved matrix loads back identically."""

    path = str(tmp_path / "meth.npz")
    TEST_MATRIX.save_npz(path)
    loaded = MethylationMatrix.load_npz(path)

    assert loaded.chromosomes == TEST_MATRIX.chromosomes
    assert loaded.sample_names == TEST_MATRIX.sample_names
    assert np.array_equal(loaded.positions, TEST_MATRIX.positions)
    assert np.array_equal(loaded.values, TEST_MATRIX.values, equal_nan=True)


def test_load_missing_file() -> None:
    """Test that a missing file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError, match="Cannot read methylation matrix"):
        MethylationMatrix.load_npz("/nonexistent/meth.npz")


def test_shape_mismatch() -> None:
    """Values must have one row per site and one column per sample."""
    with pytest.raises(DimensionMismatch, match="values has shape"):
        MethylationMatrix(
            seqnames=["chr1", "chr1"],
            positions=[1, 2],
            values=[[0.1, 0.2]],
            sample_names=["s1", "s2"],
        )
    with pytest.raises(DimensionMismatch):
        MethylationMatrix(
            seqnames=["chr1"],
            positions=[1, 2],
            values=[[0.1], [0.2]],
            sample_names=["s1"],
        )


def test_duplicate_positions() -> None:
    """Test that duplicated sites raise ValueError."""
    with pytest.raises(ValueError, match="Duplicate site positions"):
        MethylationMatrix(
            seqnames=["chr1", "chr1"],
            positions=[5, 5],
            values=[[0.1], [0.2]],
            sample_names=["s1"],
        )


def test_empty_matrix() -> None:
    """A matrix without sites is valid."""

    empty = MethylationMatrix(seqnames=[], positions=[], values=[], sample_names=["s1"])
    assert empty.total_sites == 0
    assert empty.chromosomes == []
