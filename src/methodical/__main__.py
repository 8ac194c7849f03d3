# Import modules
import click
import os
import time
from dataclasses import replace
from typing import Optional, Sequence

from methodical.anchor import compute_anchor_correlations_batch
from methodical.correlation import COR_METHODS, P_ADJUST_METHODS
from methodical.tables import (
    load_methylation,
    read_anchors,
    read_feature_table,
    write_correlations,
    write_tmrs,
)
from methodical.tmrs import find_tmrs_batch
from methodical.window import DEFAULT_DOWNSTREAM, DEFAULT_UPSTREAM, Anchor


def validate_output(output_file: str, overwrite: bool) -> None:
    """Check that the output file can be written.

    Raises
    ----------
    ValueError: If the output file exists and overwrite is not set, or the
        output directory is not writable.
    """
    if os.path.exists(output_file):
        if overwrite and os.access(output_file, os.W_OK):
            print("\t\tOutput file exists and --overwrite specified. Will overwrite it.")
        else:
            raise ValueError(
                f"Output file exists and --overwrite not specified or not writable: {output_file}"
            )
    elif not os.access(os.path.dirname(os.path.abspath(output_file)), os.W_OK):
        raise ValueError(f"Output file path is not writable: {output_file}")


def apply_default_extents(
    anchors: Sequence[Anchor], upstream: Optional[int], downstream: Optional[int]
) -> list[Anchor]:
    """Use the command line window extents for anchors that don't set their own."""
    return [
        replace(
            anchor,
            upstream=upstream if anchor.upstream is None else anchor.upstream,
            downstream=downstream if anchor.downstream is None else anchor.downstream,
        )
        for anchor in anchors
    ]


@click.command(
    help="Find transcript-associated methylation regions (TMRs) around anchors such as TSSs."
)
@click.version_option(package_name="methodical")
@click.option(
    "--methylation",
    help="Methylation matrix: a .npz saved by MethylationMatrix.save_npz, or a TSV with seqname, position and one column per sample.",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--anchors",
    help="TSV of anchors with columns name, seqname, position and optionally strand, upstream, downstream.",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "--expression",
    help="TSV of feature values: first column the anchor name, then one column per sample.",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option("--output", help="Output TSV of TMRs.", required=True, type=click.Path())
@click.option(
    "--correlations-dir",
    help="Optional directory to write per-anchor site correlations to.",
    type=click.Path(file_okay=False, dir_okay=True, writable=True),
)
@click.option(
    "--upstream",
    help="bp upstream of each anchor, unless the anchor table sets it (default = 5000)",
    type=click.IntRange(min=0),
)
@click.option(
    "--downstream",
    help="bp downstream of each anchor, unless the anchor table sets it (default = 5000)",
    type=click.IntRange(min=0),
)
@click.option(
    "--cor-method",
    help="Correlation method (default = pearson)",
    default="pearson",
    type=click.Choice(COR_METHODS),
)
@click.option(
    "--p-adjust-method",
    help="Multiple testing correction for site q-values (default = BH)",
    default="BH",
    type=click.Choice(list(P_ADJUST_METHODS)),
)
@click.option(
    "--n-covariates",
    help="Number of covariates adjusted for (partial correlations, default = 0)",
    default=0,
    type=click.IntRange(min=0),
)
@click.option(
    "--p-value-threshold",
    help="p-value threshold for significant sites (default = 0.005)",
    default=0.005,
    type=click.FloatRange(min=0, max=1, min_open=True, max_open=True),
)
@click.option("--no-smooth", help="Call TMRs on raw scores instead of smoothed scores.", is_flag=True)
@click.option("--offset-length", help="Sites on each side to smooth over (default = 10)", default=10, type=click.IntRange(min=0))
@click.option(
    "--smoothing-factor",
    help="Exponential smoothing factor (default = 0.75)",
    default=0.75,
    type=click.FloatRange(min=0, max=1, min_open=True),
)
@click.option("--min-meth-sites", help="Minimum sites per TMR (default = 5)", default=5, type=click.IntRange(min=0))
@click.option("--min-gapwidth", help="Merge TMRs closer than this in bp (default = 150)", default=150, type=click.IntRange(min=0))
@click.option("--workers", help="Anchors processed in parallel (default = 1)", default=1, type=click.IntRange(min=1))
@click.option("--verbose", help="Verbose output.", is_flag=True)
@click.option("--overwrite", help="Overwrite output file if it exists.", is_flag=True)
def main(
    methylation: str,
    anchors: str,
    expression: str,
    output: str,
    correlations_dir: str,
    upstream: Optional[int],
    downstream: Optional[int],
    cor_method: str,
    p_adjust_method: str,
    n_covariates: int,
    p_value_threshold: float,
    no_smooth: bool,
    offset_length: int,
    smoothing_factor: float,
    min_meth_sites: int,
    min_gapwidth: int,
    workers: int,
    verbose: bool,
    overwrite: bool,
) -> None:
    """Methodical."""
    time_start = time.time()
    print(f"Methylation: {methylation}")
    print(f"Anchors: {anchors}")
    print(f"Expression: {expression}")
    print(
        f"Default window: {DEFAULT_UPSTREAM if upstream is None else upstream} bp upstream, "
        f"{DEFAULT_DOWNSTREAM if downstream is None else downstream} bp downstream"
    )

    validate_output(output, overwrite)

    #################################################
    # Load inputs
    #################################################

    print(f"\nLoading methylation matrix: {methylation}")
    matrix = load_methylation(methylation, verbose=verbose)
    anchor_list = apply_default_extents(read_anchors(anchors), upstream, downstream)
    feature_table = read_feature_table(expression)
    print(
        f"\tFound {matrix.total_sites:,} sites, {len(matrix.sample_names)} samples "
        f"and {len(anchor_list):,} anchors."
    )

    #################################################
    # Correlate sites around each anchor
    #################################################

    print(f"\nCalculating {cor_method} correlations with {workers} worker(s)")
    outcomes = compute_anchor_correlations_batch(
        matrix,
        anchor_list,
        feature_table,
        cor_method=cor_method,
        p_adjust_method=p_adjust_method,
        n_covariates=n_covariates,
        n_workers=workers,
        verbose=verbose,
    )

    if correlations_dir:
        os.makedirs(correlations_dir, exist_ok=True)
        for name, outcome in outcomes.items():
            if outcome.ok:
                write_correlations(
                    outcome.correlations,
                    os.path.join(correlations_dir, f"{name}.correlations.tsv"),
                )

    #################################################
    # Call TMRs
    #################################################

    tmrs = find_tmrs_batch(
        outcomes.values(),
        p_value_threshold=p_value_threshold,
        smooth=not no_smooth,
        offset_length=offset_length,
        smoothing_factor=smoothing_factor,
        min_meth_sites=min_meth_sites,
        min_gapwidth=min_gapwidth,
    )

    print(f"\nWriting {len(tmrs):,} TMRs to: {output}")
    write_tmrs(tmrs, output)

    skipped = [outcome for outcome in outcomes.values() if not outcome.ok]
    if skipped:
        print(f"\n{len(skipped)} anchors were skipped:")
        for outcome in skipped:
            print(f"\t{outcome.anchor.name}: {outcome.error}")

    print(f"\nTotal time elapsed: {time.time() - time_start:.2f} seconds")
    print("\nRun complete.")


if __name__ == "__main__":
    main(prog_name="methodical")  # pylint: disable=no-value-for-parameter
