"""Test cases for the __main__ module."""

import numpy as np
import pytest
from click.testing import CliRunner

from methodical import __main__
from methodical.matrix import MethylationMatrix
from methodical.window import Anchor


SAMPLES = [f"s{i}" for i in range(10)]


@pytest.fixture
def runner() -> CliRunner:
    """Fixture for invoking command-line interfaces."""
    return CliRunner()


@pytest.fixture
def inputs(tmp_path) -> dict:
    """Write a small methylation matrix, anchor table and expression table."""
    rng = np.random.default_rng(0)
    expression = rng.normal(size=len(SAMPLES))
    positions = np.arange(1000, 3000, 50)
    values = rng.uniform(size=(len(positions), len(SAMPLES)))
    # 1400-1800 is methylated where GENE1 is silent
    tmr_sites = (positions >= 1400) & (positions <= 1800)
    values[tmr_sites] = 0.5 - 0.2 * expression + rng.normal(
        scale=0.005, size=(tmr_sites.sum(), len(SAMPLES))
    )

    methylation = str(tmp_path / "meth.npz")
    MethylationMatrix(["chr1"] * len(positions), positions, values, SAMPLES).save_npz(methylation)

    anchors = tmp_path / "anchors.tsv"
    anchors.write_text(
        "name\tseqname\tposition\tstrand\n"
        "GENE1\tchr1\t2000\t+\n"
        "GENE2\tchr5\t2000\t+\n"
        "GENE3\tchr1\t2000\t-\n"
    )

    expression_file = tmp_path / "expression.tsv"
    expression_file.write_text(
        "feature\t" + "\t".join(SAMPLES) + "\n"
        + "GENE1\t" + "\t".join(str(v) for v in expression) + "\n"
        + "GENE2\t" + "\t".join(str(v) for v in expression) + "\n"
    )

    return {
        "methylation": methylation,
        "anchors": str(anchors),
        "expression": str(expression_file),
        "output": str(tmp_path / "tmrs.tsv"),
        "correlations_dir": str(tmp_path / "correlations"),
    }


def test_main_succeeds(runner: CliRunner) -> None:
    """It exits with a status code of zero."""
    result = runner.invoke(__main__.main, ["--help"])
    assert result.exit_code == 0


def test_validate_output(tmp_path) -> None:
    """Test validate_output."""

    __main__.validate_output(str(tmp_path / "new.tsv"), overwrite=False)

    existing = tmp_path / "existing.tsv"
    existing.touch()
    __main__.validate_output(str(existing), overwrite=True)
    with pytest.raises(ValueError, match="Output file exists"):
        __main__.validate_output(str(existing), overwrite=False)


def test_validate_output_unwritable() -> None:
    """Test validate_output raises ValueError for a missing directory."""
    with pytest.raises(ValueError, match="not writable"):
        __main__.validate_output("/nonexistent/path/tmrs.tsv", overwrite=False)


def test_main(runner: CliRunner, inputs: dict) -> None:
    """Test main() call, which runs everything."""

    result = runner.invoke(
        __main__.main,
        [
            "--methylation",
            inputs["methylation"],
            "--anchors",
            inputs["anchors"],
            "--expression",
            inputs["expression"],
            "--output",
            inputs["output"],
            "--correlations-dir",
            inputs["correlations_dir"],
            "--upstream",
            "1000",
            "--downstream",
            "1000",
            "--min-meth-sites",
            "3",
            "--workers",
            "2",
            "--verbose",
        ],
    )

    print(result.output)
    assert result.exit_code == 0, f"Failed with: {result.output}"
    assert "Run complete." in result.output
    assert "2 anchors were skipped" in result.output

    with open(inputs["output"]) as f:
        rows = [line.rstrip("\n").split("\t") for line in f]
    assert rows[0][:4] == ["seqname", "start", "end", "direction"]
    assert len(rows) > 1
    gene1 = [row for row in rows[1:] if row[-1].startswith("GENE1_")]
    assert gene1 and all(row[3] == "negative" for row in gene1)
    assert any(int(row[1]) <= 1800 and int(row[2]) >= 1400 for row in gene1)

    with open(f"{inputs['correlations_dir']}/GENE1.correlations.tsv") as f:
        assert f.readline().startswith("# anchor=GENE1")


def test_main_existing_output(runner: CliRunner, inputs: dict) -> None:
    """An existing output file is not overwritten without --overwrite."""

    with open(inputs["output"], "w") as f:
        f.write("keep me\n")

    args = [
        "--methylation",
        inputs["methylation"],
        "--anchors",
        inputs["anchors"],
        "--expression",
        inputs["expression"],
        "--output",
        inputs["output"],
    ]
    result = runner.invoke(__main__.main, args)
    assert result.exit_code != 0
    with open(inputs["output"]) as f:
        assert f.read() == "keep me\n"

    result = runner.invoke(__main__.main, args + ["--overwrite"])
    assert result.exit_code == 0, f"Failed with: {result.output}"


def test_main_invalid_option(runner: CliRunner, inputs: dict) -> None:
    """Unknown correlation methods are rejected by the command line."""

    result = runner.invoke(
        __main__.main,
        [
            "--methylation",
            inputs["methylation"],
            "--anchors",
            inputs["anchors"],
            "--expression",
            inputs["expression"],
            "--output",
            inputs["output"],
            "--cor-method",
            "kendall",
        ],
    )
    assert result.exit_code == 2


def test_apply_default_extents() -> None:
    """Command line extents only fill in extents an anchor leaves unset."""

    anchors = [
        Anchor("GENE1", "chr1", 1500, "+", upstream=100, downstream=100),
        Anchor("GENE2", "chr1", 2500, "-", upstream=50),
        Anchor("GENE3", "chr1", 3500, "+"),
    ]

    assert __main__.apply_default_extents(anchors, 1000, 2000) == [
        Anchor("GENE1", "chr1", 1500, "+", upstream=100, downstream=100),
        Anchor("GENE2", "chr1", 2500, "-", upstream=50, downstream=2000),
        Anchor("GENE3", "chr1", 3500, "+", upstream=1000, downstream=2000),
    ]
    assert __main__.apply_default_extents(anchors, None, None) == anchors


def test_main_anchor_extents(runner: CliRunner, inputs: dict, tmp_path) -> None:
    """Window extents set in the anchor table are used for that anchor."""

    anchors = tmp_path / "narrow_anchors.tsv"
    anchors.write_text(
        "name\tseqname\tposition\tstrand\tupstream\tdownstream\n"
        "GENE1\tchr1\t1500\t+\t100\t100\n"
        "GENE2\tchr1\t2000\t+\t\t\n"
    )

    result = runner.invoke(
        __main__.main,
        [
            "--methylation",
            inputs["methylation"],
            "--anchors",
            str(anchors),
            "--expression",
            inputs["expression"],
            "--output",
            inputs["output"],
            "--correlations-dir",
            inputs["correlations_dir"],
            "--upstream",
            "300",
            "--downstream",
            "200",
        ],
    )
    assert result.exit_code == 0, f"Failed with: {result.output}"

    def correlated_positions(name: str) -> list[int]:
        with open(f"{inputs['correlations_dir']}/{name}.correlations.tsv") as f:
            rows = [line.split("\t") for line in f.read().splitlines()[2:]]
        return [int(row[1]) for row in rows]

    assert correlated_positions("GENE1") == [1400, 1450, 1500, 1550, 1600]
    assert correlated_positions("GENE2") == list(range(1700, 2201, 50))
