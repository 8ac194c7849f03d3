"""methodical: Find transcript-associated methylation regions (TMRs).

methodical correlates the methylation of individual sites with the expression
of a nearby transcript across a cohort of samples, converts each site's
correlation into a signed significance score and calls TMRs: runs of sites
whose (smoothed) scores consistently breach a significance threshold.

Main Components:
    rapid_cor_test: Vectorised correlation and significance testing between
        every column of one table and every column of another.
    MethylationMatrix: Read-only site x sample methylation values with a
        per-chromosome coordinate index.
    compute_anchor_correlations: Correlate the sites within a window around an
        anchor (e.g. a TSS) with the anchor's transcript expression.
    calculate_smoothed_scores: Methodical scores and their exponential smoothing.
    find_tmrs: Call TMRs from methodical scores.

Example:
    Command-line usage::

        $ methodical --methylation meth.npz --anchors tss.tsv \\
            --expression expression.tsv --output tmrs.tsv

    Python API usage::

        from methodical.anchor import compute_anchor_correlations
        from methodical.matrix import MethylationMatrix
        from methodical.tmrs import find_tmrs
        from methodical.window import Anchor

        matrix = MethylationMatrix.load_npz("meth.npz")
        anchor = Anchor(name="GENE1", seqname="chr1", position=1_000_000, strand="+")
        correlations = compute_anchor_correlations(matrix, expression, anchor)
        tmrs = find_tmrs(correlations)

Output Format:
    TMRs are written as a TSV with columns seqname, start, end, direction
    (positive or negative), site_count, distance_to_anchor, anchor_location
    and name.
"""

__version__ = "1.0"
