from __future__ import annotations

import logging
from typing import Collection, Dict, Iterator, List, Optional, Sequence

import pysam

from .errors import MalformedSiteError, UnresolvedChromosomeError
from .models import Site
from .validation import remap_contig

logger = logging.getLogger(__name__)


def _clean_allele(allele: Optional[str]) -> Optional[str]:
    if allele is None:
        return None
    allele = str(allele).strip()
    if allele in ("", "."):
        return None
    return allele.upper()


def parse_site(
    chrom: Optional[str],
    pos0: int,
    ref: Optional[str],
    alt: Optional[str],
    n_allele: Optional[int] = None,
    *,
    contigs: Optional[Collection[str]] = None,
) -> Site:
    """Turn one variant record into a :class:`Site`.

    Raises
    ------
    UnresolvedChromosomeError
        Empty chromosome name, or ``contigs`` given and the name is not in it.
    MalformedSiteError
        Ref or alt longer than one base, or more than two alleles.
    """
    if not chrom:
        raise UnresolvedChromosomeError("could not get chr name")
    if contigs is not None and chrom not in contigs:
        raise UnresolvedChromosomeError(f"chr '{chrom}' not found in the alignment header")
    ref = _clean_allele(ref)
    alt = _clean_allele(alt)
    if n_allele is None:
        n_allele = int(ref is not None) + int(alt is not None)
    if ref is not None and len(ref) > 1:
        raise MalformedSiteError("ref_len > 1", reason="ref_len")
    if n_allele > 2:
        raise MalformedSiteError("n_allele > 2", reason="n_allele")
    if alt is not None and len(alt) > 1:
        raise MalformedSiteError("alt_len > 1", reason="alt_len")
    return Site(chrom=str(chrom), pos0=int(pos0), ref=ref, alt=alt)


class SnpList:
    """Candidate sites in input order.

    ``skipped`` counts rejected records per reason (``ref_len``, ``alt_len``,
    ``n_allele``, ``chrom``).
    """

    def __init__(self, sites: Optional[Sequence[Site]] = None) -> None:
        self._sites: List[Site] = list(sites or [])
        self.skipped: Dict[str, int] = {"ref_len": 0, "alt_len": 0, "n_allele": 0, "chrom": 0}

    def __len__(self) -> int:
        return len(self._sites)

    def __iter__(self) -> Iterator[Site]:
        return iter(self._sites)

    def __getitem__(self, i: int) -> Site:
        return self._sites[i]

    @property
    def n_skipped(self) -> int:
        return sum(self.skipped.values())

    def append(self, site: Site) -> None:
        self._sites.append(site)

    def add_record(
        self,
        chrom: Optional[str],
        pos0: int,
        ref: Optional[str],
        alt: Optional[str],
        n_allele: Optional[int] = None,
        *,
        contigs: Optional[Collection[str]] = None,
        record_no: Optional[int] = None,
        print_skip: bool = False,
    ) -> bool:
        """Add one variant record; return False (and count it) if it is skipped."""
        try:
            site = parse_site(chrom, pos0, ref, alt, n_allele, contigs=contigs)
        except MalformedSiteError as e:
            self.skipped[e.reason] += 1
            if print_skip:
                logger.warning("skip No.%s SNP: %s", record_no if record_no is not None else "?", e)
            return False
        except UnresolvedChromosomeError as e:
            self.skipped["chrom"] += 1
            if print_skip:
                logger.warning("skip No.%s SNP: %s", record_no if record_no is not None else "?", e)
            return False
        self._sites.append(site)
        return True

    def contigs(self) -> List[str]:
        """Contig names in first-seen order."""
        seen: Dict[str, None] = {}
        for s in self._sites:
            seen.setdefault(s.chrom, None)
        return list(seen)


def load_snplist(
    vcf_path: str,
    *,
    contigs: Optional[Collection[str]] = None,
    contig_style: Optional[str] = None,
    print_skip: bool = False,
    snplist: Optional[SnpList] = None,
) -> tuple[SnpList, int]:
    """Read candidate SNPs from a VCF/BCF file.

    Ref/alt longer than one base, or more than two alleles, are skipped.
    Missing ref/alt are kept as None and inferred during pileup. With
    ``contig_style`` ("ucsc" or "ensembl") chromosome names are remapped
    before they are resolved against ``contigs``.

    Returns
    -------
    snplist:
        The list the sites were appended to (a new one unless ``snplist``
        was given).
    n_added:
        Number of sites added by this call.
    """
    pl = snplist if snplist is not None else SnpList()
    n_added = 0
    with pysam.VariantFile(vcf_path) as vcf:
        for m, rec in enumerate(vcf, start=1):
            alleles = rec.alleles or ()
            ref = alleles[0] if len(alleles) > 0 else None
            alt = alleles[1] if len(alleles) == 2 else None
            chrom = rec.chrom
            if contig_style is not None and chrom:
                chrom = remap_contig(chrom, contig_style)
            if pl.add_record(
                chrom,
                rec.pos - 1,  # VCF is 1-based
                ref,
                alt,
                len(alleles),
                contigs=contigs,
                record_no=m,
                print_skip=print_skip,
            ):
                n_added += 1
    logger.info("Loaded %d SNPs from %s (%d skipped)", n_added, vcf_path, pl.n_skipped)
    return pl, n_added
