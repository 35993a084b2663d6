from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam
from tqdm import tqdm

from . import __version__
from .errors import AlleleCollisionError
from .models import DEFAULT_EXCL_FLAG_NO_UMI, DEFAULT_EXCL_FLAG_UMI, GenotypeConfig, ReadFilter
from .mplp import MultiSamplePileup
from .report import render_report
from .scanner import SampleLookup, iter_site_records, new_scan_counts
from .snplist import load_snplist
from .utils import ensure_outdir, write_json
from .validation import resolve_contig_style
from .writer import PileupWriter

logger = logging.getLogger(__name__)


def default_read_filter(umi_tag: Optional[str]) -> ReadFilter:
    """Read filter with the exclude flag matching the UMI mode (duplicates are kept with UMIs)."""
    return ReadFilter(excl_flag=DEFAULT_EXCL_FLAG_UMI if umi_tag else DEFAULT_EXCL_FLAG_NO_UMI)


def resolve_sample_groups(
    bam_paths: Sequence[str],
    *,
    barcodes: Optional[Sequence[str]] = None,
    sample_ids: Optional[Sequence[str]] = None,
    cell_tag: Optional[str] = "CB",
) -> tuple[List[str], List[SampleLookup]]:
    """Sample-group names plus one :class:`SampleLookup` per BAM.

    With ``barcodes`` every BAM is read in barcode mode; otherwise each BAM
    is one sample group, named by ``sample_ids`` or ``Sample_<i>``.
    """
    if not bam_paths:
        raise ValueError("At least one BAM is required.")
    if barcodes is not None:
        if sample_ids is not None:
            raise ValueError("Barcodes and sample ids are mutually exclusive.")
        if not cell_tag:
            raise ValueError("Barcode mode needs a cell tag.")
        names = list(barcodes)
        lookup = SampleLookup.from_barcodes(cell_tag, names)
        return names, [lookup] * len(bam_paths)
    if sample_ids is None:
        names = [f"Sample_{i}" for i in range(len(bam_paths))]
    else:
        names = list(sample_ids)
        if len(names) != len(bam_paths):
            raise ValueError(f"Got {len(names)} sample ids for {len(bam_paths)} BAM files.")
    return names, [SampleLookup.fixed(i) for i in range(len(bam_paths))]


def _vcf_contigs(vcf_path: str) -> List[str]:
    with pysam.VariantFile(vcf_path) as vcf:
        return list(vcf.header.contigs)


def run_pileup(
    *,
    bam_paths: Sequence[str],
    vcf_path: str,
    outdir: str | Path,
    barcodes: Optional[Sequence[str]] = None,
    sample_ids: Optional[Sequence[str]] = None,
    cell_tag: Optional[str] = "CB",
    umi_tag: Optional[str] = None,
    genotype: bool = False,
    gzip: bool = False,
    config: Optional[GenotypeConfig] = None,
    read_filter: Optional[ReadFilter] = None,
    min_count: int = 20,
    min_maf: float = 0.0,
    max_depth: int = 0,
    contig_style: str = "auto",
    print_skip: bool = False,
    progress: bool = True,
) -> Dict[str, object]:
    """Pile up every SNP of ``vcf_path`` across ``bam_paths`` and write all outputs.

    Returns the run summary that is also written to ``summary.json``.
    """
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)
    bam_paths = [str(p) for p in bam_paths]

    names, lookups = resolve_sample_groups(
        bam_paths, barcodes=barcodes, sample_ids=sample_ids, cell_tag=cell_tag
    )
    cfg = dataclasses.replace(config or GenotypeConfig(), umi_aware=umi_tag is not None)
    rf = read_filter if read_filter is not None else default_read_filter(umi_tag)

    bams = [pysam.AlignmentFile(p, "rb") for p in bam_paths]
    mplp = MultiSamplePileup(config=cfg)
    writer: Optional[PileupWriter] = None
    counts = {
        "snps_loaded": 0,
        "snps_skipped": 0,
        "sites_written": 0,
        "sites_filtered": 0,
        "sites_allele_collision": 0,
    }
    scan_counts = new_scan_counts()
    try:
        bam_contigs = list(bams[0].header.references)
        style = resolve_contig_style(_vcf_contigs(vcf_path), bam_contigs, contig_style)
        snplist, n_loaded = load_snplist(
            vcf_path, contigs=set(bam_contigs), contig_style=style, print_skip=print_skip
        )
        counts["snps_loaded"] = n_loaded
        counts["snps_skipped"] = snplist.n_skipped
        if len(snplist) == 0:
            raise ValueError(
                f"No usable SNPs in {vcf_path} (skipped: {snplist.skipped}). "
                "Check contig names or use --contig-style."
            )

        mplp.set_sample_groups(names)
        writer = PileupWriter(
            outdir_path, mplp.samples, contigs=snplist.contigs(), genotype=genotype, gzip=gzip
        )

        for site in tqdm(snplist, unit="SNP", desc="Pileup", disable=not progress):
            mplp.set_site(site)
            for bam, lookup in zip(bams, lookups):
                for rec in iter_site_records(
                    bam,
                    site,
                    sample_lookup=lookup,
                    umi_tag=umi_tag,
                    read_filter=rf,
                    max_depth=max_depth,
                    counts=scan_counts,
                ):
                    mplp.push(rec)
            try:
                mplp.stat()
            except AlleleCollisionError as e:
                counts["sites_allele_collision"] += 1
                logger.warning("skip site %s:%d: %s", site.chrom, site.pos1, e)
                continue
            if not mplp.passes_filters(min_count, min_maf):
                counts["sites_filtered"] += 1
                continue
            writer.write_site(site, mplp)
            counts["sites_written"] += 1
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("site %s:%d\n%s", site.chrom, site.pos1, mplp.describe("\t"))

        outputs = writer.close()
        n_records = {m.value: n for m, n in writer.n_records.items()}
    except BaseException:
        if writer is not None:
            writer.abort()
        raise
    finally:
        for bam in bams:
            bam.close()
        mplp.destroy()

    summary: Dict[str, object] = {
        "version": __version__,
        "bam_paths": bam_paths,
        "vcf_path": str(vcf_path),
        "n_samples": len(names),
        "mode": "barcode" if barcodes is not None else "sample",
        "cell_tag": cell_tag if barcodes is not None else None,
        "umi_tag": umi_tag,
        "genotype": bool(genotype),
        "gzip": bool(gzip),
        "min_count": int(min_count),
        "min_maf": float(min_maf),
        "max_depth": int(max_depth),
        "config": dataclasses.asdict(cfg),
        "read_filter": dataclasses.asdict(rf),
        "counts": counts,
        "scan_counts": scan_counts,
        "mtx_records": n_records,
        "outputs": outputs,
        "runtime_seconds": float(time.time() - t0),
    }
    summary["report_html"] = str(render_report(outdir=outdir_path, summary=summary))
    write_json(outdir_path / "summary.json", summary)
    logger.info(
        "Pileup done: %d sites written, %d filtered, %d allele collisions",
        counts["sites_written"],
        counts["sites_filtered"],
        counts["sites_allele_collision"],
    )
    return summary
