"""Select the methylation sites within a strand-aware window around an anchor."""

from dataclasses import dataclass
from typing import Optional

# Third party modules
import numpy as np


STRANDS = ("+", "-", "*")

DEFAULT_UPSTREAM = 5000
DEFAULT_DOWNSTREAM = 5000


@dataclass(frozen=True)
class Anchor:
    """A reference position (e.g. a transcription start site) with strand.

    upstream and downstream optionally override the window extents used by
    select_window for this anchor.
    """

    name: str
    seqname: str
    position: int
    strand: str = "*"
    upstream: Optional[int] = None
    downstream: Optional[int] = None

    def __post_init__(self):
        if self.strand not in STRANDS:
            raise ValueError(f"Strand must be one of {STRANDS}, not {self.strand!r}")
        if self.position < 0:
            raise ValueError("Anchor position cannot be negative")
        for extent in (self.upstream, self.downstream):
            if extent is not None and extent < 0:
                raise ValueError(f"Window extents cannot be negative: {self.name}")

    @property
    def location(self) -> str:
        """The anchor coordinate as a string, e.g. "chr1:1000:+"."""
        return f"{self.seqname}:{self.position}:{self.strand}"

    @classmethod
    def from_location(cls, name: str, location: str) -> "Anchor":
        """Parse an anchor from a "seqname:position[:strand]" string."""
        fields = location.split(":")
        if len(fields) not in (2, 3):
            raise ValueError(f"Cannot parse anchor location: {location!r}")
        strand = fields[2] if len(fields) == 3 else "*"
        return cls(name=name, seqname=fields[0], position=int(fields[1]), strand=strand)


@dataclass(frozen=True)
class WindowedSites:
    """Sites within the window around an anchor, in genomic order.

    distances are signed distances to the anchor: negative upstream and
    positive downstream on the anchor's strand.
    """

    anchor: Anchor
    start: int
    end: int
    positions: np.ndarray
    distances: np.ndarray

    def __len__(self) -> int:
        return len(self.positions)


def window_bounds(anchor: Anchor, upstream: int, downstream: int) -> tuple[int, int]:
    """Genomic (start, end) of the window around an anchor, both inclusive."""
    if upstream < 0 or downstream < 0:
        raise ValueError("Window extents cannot be negative")
    if anchor.strand == "-":
        # Upstream of a minus strand anchor is at higher coordinates
        return max(anchor.position - downstream, 0), anchor.position + upstream
    return max(anchor.position - upstream, 0), anchor.position + downstream


def signed_distances(anchor: Anchor, positions) -> np.ndarray:
    """Distance of each position to the anchor, negative upstream."""
    positions = np.asarray(positions, dtype=np.int64)
    if anchor.strand == "-":
        return anchor.position - positions
    return positions - anchor.position


def select_window(
    site_positions,
    anchor: Anchor,
    upstream: Optional[int] = None,
    downstream: Optional[int] = None,
) -> WindowedSites:
    """Select the sites within upstream/downstream bp of an anchor.

    Args
    -------
        site_positions: Sorted positions of the sites on the anchor's chromosome
            (e.g. MethylationMatrix.site_positions(anchor.seqname)).
        anchor: The anchor to centre the window on.
        upstream: bp upstream of the anchor to include. Defaults to the anchor's
            own extent, then DEFAULT_UPSTREAM.
        downstream: bp downstream of the anchor to include. Defaults to the
            anchor's own extent, then DEFAULT_DOWNSTREAM.

    Returns
    -------
        A WindowedSites, possibly empty.
    """
    if upstream is None:
        upstream = DEFAULT_UPSTREAM if anchor.upstream is None else anchor.upstream
    if downstream is None:
        downstream = DEFAULT_DOWNSTREAM if anchor.downstream is None else anchor.downstream
    start, end = window_bounds(anchor, upstream, downstream)

    site_positions = np.asarray(site_positions, dtype=np.int64)
    first = np.searchsorted(site_positions, start, side="left")
    last = np.searchsorted(site_positions, end, side="right")
    positions = site_positions[first:last]

    return WindowedSites(
        anchor=anchor,
        start=start,
        end=end,
        positions=positions,
        distances=signed_distances(anchor, positions),
    )
