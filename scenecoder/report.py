"""Run report artifacts

Writes ``report.json`` (machine readable) and ``report.txt`` (rich tables
rendered to plain text) into the output directory. Every scene appears
with its status, so reruns are predictable.
"""

import io
import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import RunSummary, SceneStatus
from .utils import format_bitrate, format_duration, format_size

logger = logging.getLogger(__name__)

REPORT_JSON = "report.json"
REPORT_TEXT = "report.txt"

STATUS_STYLES = {
    SceneStatus.CACHED: "cyan",
    SceneStatus.RECOMPUTED: "green",
    SceneStatus.FAILED: "bold red",
}

HISTOGRAM_WIDTH = 40


def summary_to_dict(summary: RunSummary) -> Dict[str, Any]:
    source = summary.source
    return {
        "source": {
            "path": str(source.path),
            "identity": source.identity,
            **source.info.to_dict(),
        },
        "output": str(summary.output_path) if summary.output_path else None,
        "elapsed": summary.elapsed,
        "cache": {"hits": summary.stage_hits, "misses": summary.stage_misses},
        "scenes": [result.to_dict() for result in summary.results],
        "failed": [result.scene.index for result in summary.failed],
        "aggregate": summary.aggregate,
    }


def scene_table(summary: RunSummary) -> Table:
    table = Table(title="Scenes")
    table.add_column("Scene", justify="right")
    table.add_column("Frames", justify="right")
    table.add_column("Status")
    table.add_column("Quality", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Error")
    for result in summary.results:
        score = result.measurement["score"] if result.measurement else None
        table.add_row(
            str(result.scene.index),
            f"{result.scene.start}-{result.scene.end}",
            Text(result.status.value, style=STATUS_STYLES[result.status]),
            f"{result.quality:g}" if result.quality is not None else "-",
            f"{score:.3f}" if score is not None else "-",
            format_size(result.encoded_size) if result.encoded_size else "-",
            result.error or "",
        )
    return table


def aggregate_table(aggregate: Dict[str, Any]) -> Table:
    table = Table(title="Aggregate")
    table.add_column("Metric")
    table.add_column("Weighted mean", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Std dev", justify="right")
    percentile_keys = []
    for stats in aggregate["metrics"].values():
        percentile_keys = list(stats["percentiles"])
        break
    for key in percentile_keys:
        table.add_column(f"p{key}", justify="right")
    for name, stats in sorted(aggregate["metrics"].items()):
        table.add_row(
            name,
            f"{stats['weighted_mean']:.3f}",
            f"{stats['min']:.3f}",
            f"{stats['max']:.3f}",
            f"{stats['stdev']:.3f}",
            *(f"{stats['percentiles'][key]:.3f}" for key in percentile_keys),
        )
    return table


def render_histogram(console: Console, aggregate: Dict[str, Any]) -> None:
    bins = aggregate.get("histogram") or []
    if not bins:
        return
    peak = max(b["count"] for b in bins) or 1
    console.print(f"{aggregate['metric']} score distribution", style="bold")
    for b in bins:
        bar = "█" * int(round(b["count"] / peak * HISTOGRAM_WIDTH))
        console.print(f"{b['low']:8.3f} - {b['high']:8.3f} | {bar} {b['count']}")


def render_text(summary: RunSummary) -> str:
    console = Console(record=True, file=io.StringIO(), width=120)
    console.print(f"Source: {summary.source.path}", style="bold")
    console.print(f"Output: {summary.output_path or 'not merged'}")
    console.print(f"Elapsed: {format_duration(summary.elapsed)}")
    console.print(scene_table(summary))
    aggregate = summary.aggregate
    if aggregate and aggregate.get("metrics"):
        console.print(aggregate_table(aggregate))
        render_histogram(console, aggregate)
    if aggregate:
        console.print(f"Total size: {format_size(aggregate['bytes'])}")
        if aggregate.get("bitrate"):
            console.print(f"Bitrate: {format_bitrate(aggregate['bitrate'])}")
    if summary.failed:
        console.print(
            f"Failed scenes: {', '.join(str(r.scene.index) for r in summary.failed)}",
            style="bold red"
        )
    return console.export_text()


def write_report(output_dir: Path, summary: RunSummary) -> Tuple[Path, Path]:
    """Write both report files and return their paths"""
    json_path = output_dir / REPORT_JSON
    text_path = output_dir / REPORT_TEXT
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(summary_to_dict(summary), f, indent=2, sort_keys=True)
        f.write("\n")
    with open(text_path, "w", encoding="utf-8") as f:
        f.write(render_text(summary))
    logger.info("Report written to %s", text_path)
    return json_path, text_path
