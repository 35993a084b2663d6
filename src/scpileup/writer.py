"""Output files of a pileup run.

Layout of ``outdir``::

    cellSNP.base.vcf[.gz]      one line per kept site, 8 fixed columns
    cellSNP.cells.vcf[.gz]     same sites with per-sample fields (genotype mode)
    cellSNP.samples.tsv        sample-group names, one per line, matrix column order
    cellSNP.tag.AD.mtx         MatrixMarket sparse matrices, sites x samples
    cellSNP.tag.DP.mtx
    cellSNP.tag.OTH.mtx

MatrixMarket headers carry the entry count, which is only known once every
site has been seen, so matrix bodies are streamed to a side file and
prepended with the header on close.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, TextIO, Tuple

from .errors import SerializationError
from .formatter import (
    format_base_vcf_line,
    format_cells_vcf_line,
    format_mtx,
    format_mtx_tmp,
    mtx_header,
    render_vcf_header,
)
from .models import MtxMetric, Site
from .mplp import MultiSamplePileup
from .utils import ensure_outdir, open_maybe_gzip

logger = logging.getLogger(__name__)

BASE_VCF = "cellSNP.base.vcf"
CELLS_VCF = "cellSNP.cells.vcf"
SAMPLES_TSV = "cellSNP.samples.tsv"


class MtxWriter:
    """Streams one sparse matrix, writing the header when closed."""

    def __init__(self, path: str | Path, n_samples: int) -> None:
        self.path = Path(path)
        self.n_samples = int(n_samples)
        self.n_sites = 0
        self.n_records = 0
        self._body_path = self.path.with_name(self.path.name + ".body.tmp")
        self._body: Optional[TextIO] = open(self._body_path, "wt", encoding="utf-8")

    def write_site(self, text: str, n_records: int) -> None:
        """Append one site's lines (possibly empty) holding ``n_records`` entries."""
        if self._body is None:
            raise SerializationError(f"{self.path} is already closed")
        self._body.write(text)
        self.n_sites += 1
        self.n_records += int(n_records)

    def close(self) -> Path:
        if self._body is None:
            return self.path
        self._body.close()
        self._body = None
        with open(self.path, "wt", encoding="utf-8") as out:
            out.write(mtx_header(self.n_sites, self.n_samples, self.n_records))
            with open(self._body_path, "rt", encoding="utf-8") as body:
                shutil.copyfileobj(body, out)
        os.remove(self._body_path)
        logger.debug("Wrote %s (%d sites, %d records)", self.path, self.n_sites, self.n_records)
        return self.path

    def abort(self) -> None:
        """Discard the body and any matrix file at ``path`` without writing a header."""
        if self._body is not None:
            self._body.close()
            self._body = None
        self._body_path.unlink(missing_ok=True)
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "MtxWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()


class PileupWriter:
    """Owns every output file of one run.

    Parameters
    ----------
    outdir:
        Output directory (created if missing).
    samples:
        Sample-group names in column order.
    contigs:
        Contig names for the VCF headers.
    genotype:
        Also write ``cellSNP.cells.vcf`` with per-sample fields.
    gzip:
        Gzip the VCF outputs.
    """

    def __init__(
        self,
        outdir: str | Path,
        samples: Sequence[str],
        *,
        contigs: Sequence[str] = (),
        genotype: bool = False,
        gzip: bool = False,
    ) -> None:
        self.outdir = ensure_outdir(outdir)
        self.samples = list(samples)
        self.genotype = bool(genotype)
        suffix = ".gz" if gzip else ""
        self.base_vcf_path = self.outdir / (BASE_VCF + suffix)
        self.cells_vcf_path = self.outdir / (CELLS_VCF + suffix) if self.genotype else None
        self.samples_path = self.outdir / SAMPLES_TSV
        self.n_sites = 0

        with open(self.samples_path, "wt", encoding="utf-8") as f:
            for name in self.samples:
                f.write(name + "\n")

        self._base = open_maybe_gzip(self.base_vcf_path, "wt")
        self._base.write(render_vcf_header(contigs))
        self._cells: Optional[TextIO] = None
        if self.cells_vcf_path is not None:
            self._cells = open_maybe_gzip(self.cells_vcf_path, "wt")
            self._cells.write(render_vcf_header(contigs, self.samples))
        self._mtx: Dict[MtxMetric, MtxWriter] = {
            m: MtxWriter(self.outdir / m.filename, len(self.samples)) for m in MtxMetric
        }
        self._closed = False

    def write_site(self, site: Site, mplp: MultiSamplePileup) -> int:
        """Write one finished site; return its 1-based row in the matrices."""
        if self._closed:
            raise SerializationError("writer is already closed")
        self.n_sites += 1
        self._base.write(format_base_vcf_line(site, mplp) + "\n")
        if self._cells is not None:
            self._cells.write(format_cells_vcf_line(site, mplp) + "\n")
        for m, text in format_mtx(mplp, self.n_sites).items():
            self._mtx[m].write_site(text, mplp.record_counts[m])
        return self.n_sites

    @property
    def n_records(self) -> Dict[MtxMetric, int]:
        return {m: w.n_records for m, w in self._mtx.items()}

    def paths(self) -> Dict[str, str]:
        out = {
            "base_vcf": str(self.base_vcf_path),
            "samples": str(self.samples_path),
        }
        if self.cells_vcf_path is not None:
            out["cells_vcf"] = str(self.cells_vcf_path)
        for m, w in self._mtx.items():
            out[f"mtx_{m.value}"] = str(w.path)
        return out

    def close(self) -> Dict[str, str]:
        if not self._closed:
            self._base.close()
            if self._cells is not None:
                self._cells.close()
            for w in self._mtx.values():
                w.close()
            self._closed = True
            logger.info("Wrote %d sites into %s", self.n_sites, self.outdir)
        return self.paths()

    def abort(self) -> None:
        """Close every handle and delete the outputs of an unfinished run."""
        if self._closed:
            return
        self._base.close()
        if self._cells is not None:
            self._cells.close()
        for w in self._mtx.values():
            w.abort()
        for p in (self.base_vcf_path, self.cells_vcf_path, self.samples_path):
            if p is not None:
                p.unlink(missing_ok=True)
        self._closed = True
        logger.warning("Removed partial outputs in %s after %d sites", self.outdir, self.n_sites)

    def __enter__(self) -> "PileupWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()


def write_tmp_mtx(handles: Dict[MtxMetric, TextIO], mplp: MultiSamplePileup) -> Dict[MtxMetric, int]:
    """Append one site to per-worker temporary matrices.

    Returns the number of entries written per matrix.
    """
    for m, text in format_mtx_tmp(mplp).items():
        handles[m].write(text)
    return dict(mplp.record_counts)


def _iter_tmp_blocks(path: str | Path) -> Iterable[List[str]]:
    block: List[str] = []
    with open_maybe_gzip(path, "rt") as f:
        for line in f:
            line = line.rstrip("\n")
            if line:
                block.append(line)
            else:
                yield block
                block = []
    if block:
        raise SerializationError(f"{path}: last site block is not terminated by a blank line")


def merge_tmp_mtx(tmp_paths: Sequence[str | Path], out_path: str | Path, n_samples: int) -> Tuple[int, int]:
    """Merge temporary matrices into one final MatrixMarket file.

    Site blocks are numbered consecutively across ``tmp_paths`` in the order
    given.

    Returns
    -------
    (n_sites, n_records)
    """
    with MtxWriter(out_path, n_samples) as w:
        for p in tmp_paths:
            n_before = w.n_sites
            for block in _iter_tmp_blocks(p):
                site_idx = w.n_sites + 1
                w.write_site("".join(f"{site_idx}\t{line}\n" for line in block), len(block))
            logger.debug("Merged %d sites from %s", w.n_sites - n_before, p)
    return w.n_sites, w.n_records
