from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import pysam

from . import __version__
from .models import GenotypeConfig, ReadFilter
from .pipeline import default_read_filter, resolve_sample_groups, run_pileup
from .toy_data import make_toy_data
from .utils import ensure_outdir, read_lines
from .validation import check_bam_index, detect_contig_style
from .writer import merge_tmp_mtx


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(max(verbosity, 0), 2)]
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logfile))
    root = logging.getLogger()
    root.setLevel(level)
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
        root.addHandler(h)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _flag_int(s: str) -> int:
    # SAM flags are often given in hex
    try:
        return int(s, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a SAM flag value: {s}") from None


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _resolve_umi_tag(value: str, *, barcode_mode: bool) -> Optional[str]:
    """'Auto' means UB with barcodes and no UMI without; 'None' disables UMIs."""
    if value.lower() == "auto":
        return "UB" if barcode_mode else None
    if value.lower() == "none":
        return None
    return value


def _bam_contigs(bam_path: str) -> list[str]:
    with pysam.AlignmentFile(bam_path, "rb") as bam:
        return list(bam.header.references)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="scpileup",
        description=(
            "scpileup: allele counting and genotype likelihoods at known SNPs "
            "for single-cell (barcoded, UMI-aware) or bulk BAMs."
        ),
    )
    p.add_argument("--version", action="version", version=f"scpileup {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, barcoded BAM, barcode list and SNP VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Directory for the toy inputs.")
    t.add_argument("--dry-run", action="store_true", help="Print the target directory and exit.")

    # -----------------
    # pileup
    # -----------------
    a = sub.add_parser(
        "pileup",
        help="Count alleles per cell (or sample) at the SNPs of a VCF.",
    )
    a.add_argument(
        "--bam",
        required=True,
        nargs="+",
        type=_path_exists,
        help="Input BAM(s), sorted and indexed. Several BAMs are one sample each unless --barcode-file is given.",
    )
    a.add_argument("--vcf", required=True, type=_path_exists, help="Candidate SNPs (.vcf/.vcf.gz/.bcf).")
    a.add_argument("--outdir", required=True, help="Output directory.")
    grp = a.add_mutually_exclusive_group()
    grp.add_argument(
        "--barcode-file",
        type=_path_exists,
        default=None,
        help="Cell barcodes, one per line (plain or .gz). Enables barcode mode.",
    )
    grp.add_argument(
        "--sample-ids",
        default=None,
        help="Comma-separated sample names, one per BAM (default: Sample_0, Sample_1, ...).",
    )
    a.add_argument("--cell-tag", default="CB", help="Read tag holding the cell barcode.")
    a.add_argument(
        "--umi-tag",
        default="Auto",
        help="Read tag holding the UMI; 'Auto' = UB in barcode mode and none otherwise, 'None' disables.",
    )

    # Outputs
    a.add_argument("--genotype", action="store_true", help="Also write cellSNP.cells.vcf with genotype fields.")
    a.add_argument("--gzip", action="store_true", help="Gzip the VCF outputs.")
    a.add_argument(
        "--doublet-gl",
        action="store_true",
        help="Add the two doublet genotype likelihoods to the model.",
    )

    # Site filters
    a.add_argument("--min-count", type=int, default=20, help="Minimum reads (over all samples) at a site.")
    a.add_argument("--min-maf", type=float, default=0.0, help="Minimum alt-base fraction at a site.")

    # Read filters
    a.add_argument("--min-mapq", type=int, default=20, help="Minimum mapping quality.")
    a.add_argument("--min-len", type=int, default=30, help="Minimum aligned read length.")
    a.add_argument("--incl-flag", type=_flag_int, default=0, help="Keep only reads with any of these flags.")
    a.add_argument(
        "--excl-flag",
        type=_flag_int,
        default=None,
        help="Drop reads with any of these flags (default: 772 with UMIs, 1796 without).",
    )
    a.add_argument("--max-depth", type=int, default=0, help="Maximum pileup depth per BAM (0 = no limit).")

    # Genotype model
    a.add_argument("--cap-bq", type=int, default=45, help="Upper cap on base quality.")
    a.add_argument("--min-bq", type=int, default=20, help="Floor on base quality.")

    a.add_argument(
        "--contig-style",
        choices=["ucsc", "ensembl", "auto", "none"],
        default="auto",
        help="Contig naming style to reconcile BAM/VCF chromosome names.",
    )
    a.add_argument("--print-skip-snp", action="store_true", help="Log every SNP skipped while loading.")
    a.add_argument("--no-progress", action="store_true", help="Hide the progress bar.")
    a.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    a.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # merge-mtx
    # -----------------
    m = sub.add_parser(
        "merge-mtx",
        help="Merge temporary sparse matrices (one block per site) into a MatrixMarket file.",
    )
    m.add_argument("--tmp", required=True, nargs="+", type=_path_exists, help="Temporary matrices, in site order.")
    m.add_argument("--out", required=True, help="Output .mtx path.")
    m.add_argument("--n-samples", required=True, type=int, help="Number of sample columns.")
    m.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy inputs into {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_pileup(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "pileup.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("scpileup")
    logger.info("scpileup %s", __version__)

    try:
        barcodes = read_lines(args.barcode_file) if args.barcode_file else None
        if barcodes is not None and not barcodes:
            raise ValueError(f"Barcode file is empty: {args.barcode_file}")
        sample_ids = [s.strip() for s in args.sample_ids.split(",")] if args.sample_ids else None
        umi_tag = _resolve_umi_tag(args.umi_tag, barcode_mode=barcodes is not None)

        for bam in args.bam:
            check_bam_index(bam)
        names, _ = resolve_sample_groups(
            args.bam, barcodes=barcodes, sample_ids=sample_ids, cell_tag=args.cell_tag
        )

        rf = default_read_filter(umi_tag)
        rf = ReadFilter(
            min_mapq=args.min_mapq,
            min_len=args.min_len,
            incl_flag=args.incl_flag,
            excl_flag=rf.excl_flag if args.excl_flag is None else args.excl_flag,
        )
        config = GenotypeConfig(cap_bq=args.cap_bq, min_bq=args.min_bq, doublet_gl=bool(args.doublet_gl))

        if args.dry_run:
            bam_style = detect_contig_style(_bam_contigs(args.bam[0]))
            print("Dry-run: inputs look OK.")
            print(f"Sample groups: {len(names)} ({'barcode' if barcodes is not None else 'sample'} mode)")
            print(f"UMI tag: {umi_tag or 'none'}")
            print(f"Exclude flag: {rf.excl_flag}")
            print(f"Contig style of {args.bam[0]}: {bam_style}")
            vcf_suffix = ".gz" if args.gzip else ""
            planned = [f"cellSNP.base.vcf{vcf_suffix}"]
            if args.genotype:
                planned.append(f"cellSNP.cells.vcf{vcf_suffix}")
            planned += ["cellSNP.samples.tsv", "cellSNP.tag.{AD,DP,OTH}.mtx", "report.html", "summary.json"]
            print(f"Would write into {outdir}: " + ", ".join(planned))
            return 0

        outdir = ensure_outdir(outdir)
        summary = run_pileup(
            bam_paths=args.bam,
            vcf_path=args.vcf,
            outdir=outdir,
            barcodes=barcodes,
            sample_ids=sample_ids,
            cell_tag=args.cell_tag,
            umi_tag=umi_tag,
            genotype=bool(args.genotype),
            gzip=bool(args.gzip),
            config=config,
            read_filter=rf,
            min_count=int(args.min_count),
            min_maf=float(args.min_maf),
            max_depth=int(args.max_depth),
            contig_style=args.contig_style,
            print_skip=bool(args.print_skip_snp),
            progress=not args.no_progress,
        )
        print(str(summary["report_html"]))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_merge_mtx(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)
    try:
        n_sites, n_records = merge_tmp_mtx(args.tmp, args.out, args.n_samples)
        print(json.dumps({"out": str(args.out), "n_sites": n_sites, "n_records": n_records}, indent=2))
        return 0
    except Exception as e:
        return _handle_error(e)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "pileup":
        return cmd_pileup(args)
    if args.cmd == "merge-mtx":
        return cmd_merge_mtx(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
