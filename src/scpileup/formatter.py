"""Render aggregator state as VCF text and sparse-matrix lines.

VCF sample fields use the layout ``GT:AD:DP:OTH:PL:ALL`` where ALL is the
raw ``A,C,G,T,N`` read count vector. Sparse matrices (AD, DP, OTH) come in
two layouts:

final
    ``site_idx \\t sample_idx \\t value`` per non-zero entry (both 1-based).
temporary
    ``sample_idx \\t value`` per non-zero entry, each site's block closed by
    a blank line, so per-worker files can be numbered and merged later
    (:func:`scpileup.writer.merge_tmp_mtx`).
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Dict, List, Optional, Sequence

from jinja2 import Template

from . import __version__
from .errors import SerializationError
from .likelihood import call_genotype, phred_scale
from .models import BASES, MtxMetric, Site
from .mplp import MultiSamplePileup
from .pileup import SamplePileup

logger = logging.getLogger(__name__)

MISSING_SAMPLE_FIELD = ".:.:.:.:.:."
GENOTYPES = ("0/0", "1/0", "1/1")
VCF_FORMAT = "GT:AD:DP:OTH:PL:ALL"
VCF_BASE_COLUMNS = ("#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO")


_VCF_HEADER_TEMPLATE = Template(
    """##fileformat=VCFv4.2
##source=scpileup v{{ version }}
##fileDate={{ file_date }}
{% for contig in contigs -%}
##contig=<ID={{ contig }}>
{% endfor -%}
##INFO=<ID=AD,Number=1,Type=Integer,Description="Total counts for ALT alleles">
##INFO=<ID=DP,Number=1,Type=Integer,Description="Total counts for ALT and REF alleles">
##INFO=<ID=OTH,Number=1,Type=Integer,Description="Total counts for other alleles">
{% if samples is not none -%}
##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">
##FORMAT=<ID=AD,Number=1,Type=Integer,Description="Num of ALT reads (or UMIs)">
##FORMAT=<ID=DP,Number=1,Type=Integer,Description="Num of ALT and REF reads (or UMIs)">
##FORMAT=<ID=OTH,Number=1,Type=Integer,Description="Num of other-allele reads (or UMIs)">
##FORMAT=<ID=PL,Number=G,Type=Integer,Description="List of Phred-scaled genotype likelihoods">
##FORMAT=<ID=ALL,Number=5,Type=Integer,Description="Num of reads for A,C,G,T,N">
{% endif -%}
{{ columns | join('\t') }}
"""
)


def render_vcf_header(contigs: Sequence[str], samples: Optional[Sequence[str]] = None) -> str:
    """VCF header text ending with the ``#CHROM`` line.

    With ``samples`` the FORMAT lines and a sample column per name are added.
    """
    columns = list(VCF_BASE_COLUMNS)
    if samples is not None:
        columns.append("FORMAT")
        columns.extend(samples)
    # jinja2 drops the trailing newline of the template
    return _VCF_HEADER_TEMPLATE.render(
        version=__version__,
        file_date=_dt.date.today().strftime("%Y%m%d"),
        contigs=list(contigs),
        samples=samples,
        columns=columns,
    ) + "\n"


def _join_pl(values: Sequence[float]) -> str:
    return ",".join(f"{v:.0f}" for v in values)


def format_sample_field(plp: SamplePileup) -> str:
    """One sample's ``GT:AD:DP:OTH:PL:ALL`` field, or the missing marker if it has no reads."""
    if plp.total_count <= 0:
        return MISSING_SAMPLE_FIELD
    n = plp.n_likelihoods
    if n < 3:
        raise SerializationError(
            f"sample {plp.name!r} has {plp.total_count} reads but {n} genotype likelihoods"
        )
    gt = GENOTYPES[call_genotype(plp.log_likelihoods)]
    pl = _join_pl(phred_scale(plp.log_likelihoods))
    counts = ",".join(str(c) for c in plp.base_counts)
    return f"{gt}:{plp.alt_count}:{plp.ref_plus_alt_count}:{plp.other_count}:{pl}:{counts}"


def format_vcf_samples(mplp: MultiSamplePileup) -> str:
    """All sample fields, each prefixed by a tab, in sample-group order."""
    return "".join("\t" + format_sample_field(plp) for plp in mplp)


def _allele_base(idx: Optional[int]) -> str:
    return "." if idx is None else BASES[idx]


def format_base_vcf_line(site: Site, mplp: MultiSamplePileup) -> str:
    """The 8 fixed VCF columns (no trailing newline)."""
    ref = _allele_base(mplp.effective_ref_idx)
    alt = _allele_base(mplp.effective_alt_idx)
    info = f"AD={mplp.alt_count};DP={mplp.ref_plus_alt_count};OTH={mplp.other_count}"
    return "\t".join([site.chrom, str(site.pos1), ".", ref, alt, ".", "PASS", info])


def format_cells_vcf_line(site: Site, mplp: MultiSamplePileup) -> str:
    return format_base_vcf_line(site, mplp) + "\t" + VCF_FORMAT + format_vcf_samples(mplp)


def _mtx_lines(mplp: MultiSamplePileup, site_idx: Optional[int]) -> Dict[MtxMetric, List[str]]:
    lines: Dict[MtxMetric, List[str]] = {m: [] for m in MtxMetric}
    for i, plp in enumerate(mplp, start=1):
        for m in MtxMetric:
            v = m.value_of(plp)
            if v > 0:
                if site_idx is None:
                    lines[m].append(f"{i}\t{v}\n")
                else:
                    lines[m].append(f"{site_idx}\t{i}\t{v}\n")
    emitted = {m: len(lines[m]) for m in MtxMetric}
    for m in MtxMetric:
        if emitted[m] != mplp.record_counts[m]:
            raise SerializationError(
                f"{m.value}: wrote {emitted[m]} matrix records, expected {mplp.record_counts[m]}"
            )
    return lines


def format_mtx(mplp: MultiSamplePileup, site_idx: int) -> Dict[MtxMetric, str]:
    """Final-layout matrix lines for one site (``site_idx`` is 1-based)."""
    lines = _mtx_lines(mplp, site_idx)
    return {m: "".join(v) for m, v in lines.items()}


def format_mtx_tmp(mplp: MultiSamplePileup) -> Dict[MtxMetric, str]:
    """Temporary-layout matrix lines for one site, each block closed by a blank line."""
    lines = _mtx_lines(mplp, None)
    return {m: "".join(v) + "\n" for m, v in lines.items()}


def mtx_header(n_sites: int, n_samples: int, n_records: int) -> str:
    return "%%MatrixMarket matrix coordinate integer general\n%\n" + f"{n_sites}\t{n_samples}\t{n_records}\n"
