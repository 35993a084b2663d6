from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pysam

from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_REF_SEQ = "ACGT" * 50
TOY_BARCODES = ("AAACCTGAGAAGGCCT-1", "AAACCTGAGACAGACC-1", "AAACCTGCAGTAACGG-1")
TOY_UNKNOWN_BARCODE = "TTTTTTTTTTTTTTTT-1"
TOY_READS_PER_CELL = 8
# 0-based SNP positions: the first is listed with alleles, the second without.
TOY_SNP_WITH_ALLELES = 50
TOY_SNP_NO_ALLELES = 120
# Alt bases on the reads (reference G at 50 and A at 120).
TOY_ALT = {TOY_SNP_WITH_ALLELES: "A", TOY_SNP_NO_ALLELES: "C"}

_READ_LEN = 80


class _ReadFactory:
    """Builds perfectly matching 80bp reads with CB/UB tags, optionally carrying alt bases."""

    def __init__(self, header: pysam.AlignmentHeader) -> None:
        self.header = header
        self.reads: List[pysam.AlignedSegment] = []

    def add(self, name: str, start0: int, *, cell: str, umi: str, alts=(), mapq: int = 60) -> None:
        bases = list(TOY_REF_SEQ[start0 : start0 + _READ_LEN])
        for pos0 in alts:
            bases[pos0 - start0] = TOY_ALT[pos0]
        read = pysam.AlignedSegment(self.header)
        read.query_name = name
        read.reference_name = TOY_CONTIG
        read.reference_start = start0
        read.mapping_quality = mapq
        read.cigarstring = f"{_READ_LEN}M"
        read.query_sequence = "".join(bases)
        read.query_qualities = pysam.qualitystring_to_array("I" * _READ_LEN)
        read.set_tags([("CB", cell, "Z"), ("UB", umi, "Z")])
        self.reads.append(read)

    def write_bam(self, path: Path) -> None:
        with pysam.AlignmentFile(str(path), "wb", header=self.header) as out:
            for read in sorted(self.reads, key=lambda r: r.reference_start):
                out.write(read)
        pysam.index(str(path))


def make_toy_data(*, outdir: str | Path, n_reads_per_cell: Optional[int] = None) -> Dict[str, str]:
    """Write a tiny reference, a 10x-style BAM, its barcode list and a SNP VCF.

    Each of the three listed cells has ``n_reads_per_cell`` reads (default 8)
    over chr1:51 and chr1:121.

    - chr1:51, G>A in the VCF. Cell 1 reads all G, cell 2 alternates G and A,
      cell 3 reads all A. The first two reads of cell 1 share a UMI.
    - chr1:121, no alleles in the VCF, reference A. Only cell 3 reads C.

    A MAPQ 5 read of cell 1 and two alt-carrying reads from a barcode missing
    from ``barcodes.tsv`` cover both SNPs too.

    Returns the paths under the keys ``ref_fa``, ``bam``, ``barcodes``,
    ``snp_vcf`` and ``outdir``. The same dict goes to ``toy_summary.json``.
    """
    out = ensure_outdir(outdir)
    n_reads = TOY_READS_PER_CELL if n_reads_per_cell is None else int(n_reads_per_cell)
    p1, p2 = TOY_SNP_WITH_ALLELES, TOY_SNP_NO_ALLELES
    ref_len = len(TOY_REF_SEQ)

    ref_fa = out / "toy_ref.fa"
    wrapped = [TOY_REF_SEQ[i : i + 60] for i in range(0, ref_len, 60)]
    ref_fa.write_text(f">{TOY_CONTIG}\n" + "\n".join(wrapped) + "\n", encoding="utf-8")
    pysam.faidx(str(ref_fa))

    header = pysam.AlignmentHeader.from_dict(
        {"HD": {"VN": "1.6", "SO": "coordinate"}, "SQ": [{"SN": TOY_CONTIG, "LN": ref_len}]}
    )
    factory = _ReadFactory(header)
    for ci, cell in enumerate(TOY_BARCODES):
        for j in range(n_reads):
            alts = []
            if ci == 2 or (ci == 1 and j % 2 == 1):
                alts.append(p1)
            if ci == 2:
                alts.append(p2)
            umi_j = 0 if (ci == 0 and j == 1) else j
            factory.add(f"c{ci}_r{j}", 45 + j % 3, cell=cell, umi=f"UMI{ci}{umi_j:04d}", alts=alts)
    factory.add("c0_lowmapq", 44, cell=TOY_BARCODES[0], umi="UMI0lowq", mapq=5)
    for j in range(2):
        factory.add(f"unknown_r{j}", 44, cell=TOY_UNKNOWN_BARCODE, umi=f"UMIX{j:04d}", alts=[p1])

    bam_path = out / "toy.bam"
    factory.write_bam(bam_path)

    barcodes_path = out / "barcodes.tsv"
    barcodes_path.write_text("".join(bc + "\n" for bc in TOY_BARCODES), encoding="utf-8")

    # Plain text first: pysam.VariantRecord cannot hold "." for REF.
    vcf_txt = out / "snps.vcf"
    vcf_txt.write_text(
        "##fileformat=VCFv4.2\n"
        f"##contig=<ID={TOY_CONTIG},length={ref_len}>\n"
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
        f"{TOY_CONTIG}\t{p1 + 1}\t.\t{TOY_REF_SEQ[p1]}\t{TOY_ALT[p1]}\t.\tPASS\t.\n"
        f"{TOY_CONTIG}\t{p2 + 1}\t.\t.\t.\t.\tPASS\t.\n",
        encoding="utf-8",
    )
    vcf_gz = out / "snps.vcf.gz"
    pysam.tabix_compress(str(vcf_txt), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)

    paths = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "barcodes": str(barcodes_path),
        "snp_vcf": str(vcf_gz),
        "outdir": str(out),
    }
    write_json(out / "toy_summary.json", paths)
    return paths
