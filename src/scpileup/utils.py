from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, List, TextIO

logger = logging.getLogger(__name__)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_maybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    """Open a text file, through gzip when the name ends in ``.gz``."""
    if str(path).endswith(".gz"):
        return gzip.open(path, mode, encoding="utf-8")  # type: ignore[return-value]
    return open(path, mode, encoding="utf-8")


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
        f.write("\n")


def read_lines(path: str | Path) -> List[str]:
    """Non-empty, stripped lines of a plain or gzipped list file (barcodes, sample ids)."""
    with open_maybe_gzip(path, "rt") as f:
        lines = [line.strip() for line in f]
    out = [line for line in lines if line]
    logger.debug("Read %d entries from %s", len(out), path)
    return out
