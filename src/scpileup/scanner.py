from __future__ import annotations

import logging
from typing import Dict, Iterator, Mapping, Optional, Sequence

import pysam

from .models import N_IDX, PileupRecord, ReadFilter, Site, base_to_index

logger = logging.getLogger(__name__)

# htslib caps pileup depth at max_depth; 0 is taken to mean "no cap".
_UNLIMITED_DEPTH = 2**31 - 1


class SampleLookup:
    """Resolves the sample group of a read.

    Either barcode mode (the group comes from the ``cell_tag`` of each read)
    or fixed mode (every read of a BAM belongs to one group).
    """

    def __init__(
        self,
        *,
        cell_tag: Optional[str] = None,
        barcodes: Optional[Mapping[str, int]] = None,
        fixed_idx: Optional[int] = None,
    ) -> None:
        if (cell_tag is None) == (fixed_idx is None):
            raise ValueError("Give either a cell tag with barcodes, or a fixed sample index.")
        if cell_tag is not None and barcodes is None:
            raise ValueError("Barcode mode needs the barcode -> sample index mapping.")
        self.cell_tag = cell_tag
        self.barcodes = dict(barcodes) if barcodes is not None else None
        self.fixed_idx = fixed_idx

    @classmethod
    def from_barcodes(cls, cell_tag: str, barcodes: Sequence[str]) -> "SampleLookup":
        return cls(cell_tag=cell_tag, barcodes={bc: i for i, bc in enumerate(barcodes)})

    @classmethod
    def fixed(cls, idx: int) -> "SampleLookup":
        return cls(fixed_idx=int(idx))

    @property
    def is_barcode_mode(self) -> bool:
        return self.cell_tag is not None

    def index_of(self, aln: pysam.AlignedSegment) -> Optional[int]:
        """Sample index of ``aln``, or None when its barcode is missing or unknown."""
        if self.fixed_idx is not None:
            return self.fixed_idx
        assert self.cell_tag is not None and self.barcodes is not None
        if not aln.has_tag(self.cell_tag):
            return None
        return self.barcodes.get(str(aln.get_tag(self.cell_tag)))


def passes_read_filter(aln: pysam.AlignedSegment, read_filter: ReadFilter) -> bool:
    flag = aln.flag
    if read_filter.incl_flag and not (flag & read_filter.incl_flag):
        return False
    if read_filter.excl_flag and (flag & read_filter.excl_flag):
        return False
    if aln.mapping_quality < read_filter.min_mapq:
        return False
    if (aln.query_alignment_length or 0) < read_filter.min_len:
        return False
    return True


def new_scan_counts() -> Dict[str, int]:
    return {
        "reads_seen": 0,
        "reads_filtered": 0,
        "reads_no_cell_tag": 0,
        "reads_unknown_barcode": 0,
        "reads_no_umi": 0,
        "records": 0,
    }


def iter_site_records(
    bam: pysam.AlignmentFile,
    site: Site,
    *,
    sample_lookup: SampleLookup,
    umi_tag: Optional[str] = None,
    read_filter: Optional[ReadFilter] = None,
    max_depth: int = 0,
    counts: Optional[Dict[str, int]] = None,
) -> Iterator[PileupRecord]:
    """Yield one :class:`PileupRecord` per usable read covering ``site``.

    Reads are dropped when they fail ``read_filter``, lack the cell tag or
    carry an unknown barcode (barcode mode), or lack ``umi_tag`` when one is
    set. Deletions and ref-skips are passed through flagged, the accumulator
    decides what to do with them.

    ``counts`` (see :func:`new_scan_counts`) is updated in place when given.
    """
    rf = read_filter if read_filter is not None else ReadFilter()
    c = counts if counts is not None else new_scan_counts()
    depth = int(max_depth) if max_depth and max_depth > 0 else _UNLIMITED_DEPTH

    for col in bam.pileup(
        site.chrom,
        site.pos0,
        site.pos0 + 1,
        truncate=True,
        stepper="nofilter",
        min_base_quality=0,
        ignore_overlaps=False,
        ignore_orphans=False,
        max_depth=depth,
    ):
        if col.reference_pos != site.pos0:
            continue
        for pr in col.pileups:
            aln = pr.alignment
            c["reads_seen"] += 1
            if not passes_read_filter(aln, rf):
                c["reads_filtered"] += 1
                continue

            if sample_lookup.is_barcode_mode and not aln.has_tag(sample_lookup.cell_tag):
                c["reads_no_cell_tag"] += 1
                continue
            sample_idx = sample_lookup.index_of(aln)
            if sample_idx is None:
                c["reads_unknown_barcode"] += 1
                continue

            umi: Optional[str] = None
            if umi_tag is not None:
                if not aln.has_tag(umi_tag):
                    c["reads_no_umi"] += 1
                    continue
                umi = str(aln.get_tag(umi_tag))

            qpos = pr.query_position
            is_del = bool(pr.is_del) or (qpos is None and not pr.is_refskip)
            if is_del or pr.is_refskip:
                base, qual = N_IDX, 0
            else:
                seq = aln.query_sequence
                quals = aln.query_qualities
                base = base_to_index(seq[qpos]) if seq is not None else N_IDX
                qual = int(quals[qpos]) if quals is not None else 0

            c["records"] += 1
            yield PileupRecord(
                sample_idx=sample_idx,
                base=base,
                qual=qual,
                umi=umi,
                is_refskip=bool(pr.is_refskip),
                is_del=is_del,
            )
