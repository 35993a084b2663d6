from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from jinja2 import Template

logger = logging.getLogger(__name__)

Section = Tuple[str, List[Tuple[str, Any]]]


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>scpileup: {{ title }}</title>
<style>
  body { font-family: sans-serif; max-width: 60em; margin: 2em auto; color: #222; }
  table { border-collapse: collapse; width: 100%; margin-bottom: 1.5em; }
  td { border-bottom: 1px solid #e4e4e4; padding: 4px 8px; }
  td.key { width: 40%; color: #555; }
  code { font-size: 0.92em; }
  footer { color: #888; font-size: 0.85em; }
</style>
</head>
<body>
<h1>{{ title }}</h1>
{% for heading, rows in sections %}
<h2>{{ heading }}</h2>
<table>
{% for key, value in rows %}
<tr><td class="key">{{ key }}</td><td>{{ value }}</td></tr>
{% endfor %}
</table>
{% endfor %}
<h2>Files</h2>
<ul>
{% for key, path in outputs | dictsort %}
<li>{{ key }}: <code>{{ path }}</code></li>
{% endfor %}
</ul>
<footer>scpileup {{ version }}, {{ "%.1f" | format(runtime) }} s, generated {{ generated_at }}</footer>
</body>
</html>"""
)


def _sections(s: Dict[str, Any]) -> List[Section]:
    cfg = s["config"]
    rf = s["read_filter"]
    counts = s["counts"]
    scan = s["scan_counts"]
    mtx = s["mtx_records"]

    mode = s["mode"]
    if s.get("cell_tag"):
        mode = f"{mode} ({s['cell_tag']})"
    inputs: List[Tuple[str, Any]] = [("BAM", p) for p in s["bam_paths"]]
    inputs += [
        ("SNP VCF", s["vcf_path"]),
        ("Mode", mode),
        ("Sample groups", s["n_samples"]),
        ("UMI tag", s.get("umi_tag") or "none"),
    ]
    params = [
        ("Min count / min MAF", f"{s['min_count']} / {s['min_maf']}"),
        ("Base quality floor / cap", f"{cfg['min_bq']} / {cfg['cap_bq']}"),
        ("Doublet likelihoods", "yes" if cfg["doublet_gl"] else "no"),
        ("Min MAPQ / min aligned length", f"{rf['min_mapq']} / {rf['min_len']}"),
        ("Include / exclude flags", f"{rf['incl_flag']} / {rf['excl_flag']}"),
        ("Max depth", s["max_depth"] or "unlimited"),
    ]
    snps = [
        ("Loaded", counts["snps_loaded"]),
        ("Skipped while loading", counts["snps_skipped"]),
        ("Written", counts["sites_written"]),
        ("Below min count or MAF", counts["sites_filtered"]),
        ("Ref equals alt", counts["sites_allele_collision"]),
        ("Matrix entries AD / DP / OTH", f"{mtx['AD']} / {mtx['DP']} / {mtx['OTH']}"),
    ]
    reads = [
        ("Seen at SNPs", scan["reads_seen"]),
        ("Failed read filter", scan["reads_filtered"]),
        ("No cell tag", scan["reads_no_cell_tag"]),
        ("Barcode not listed", scan["reads_unknown_barcode"]),
        ("No UMI", scan["reads_no_umi"]),
        ("Used", scan["records"]),
    ]
    return [("Inputs", inputs), ("Parameters", params), ("SNPs", snps), ("Reads", reads)]


def render_report(*, outdir: str | Path, summary: Dict[str, Any]) -> Path:
    """Write ``report.html`` for one pileup run from its summary dict."""
    out_path = Path(outdir) / "report.html"
    html = _REPORT_TEMPLATE.render(
        title="Pileup report",
        sections=_sections(summary),
        outputs=summary.get("outputs", {}),
        version=summary.get("version", ""),
        runtime=float(summary.get("runtime_seconds", 0.0)),
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
    )
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
