"""Console output for the command-line interface

Log records go through the RichHandler; these helpers print the few
run-level messages a user reads at the end of a run.
"""

from typing import Dict, Mapping, Optional

from rich.console import Console
from rich.rule import Rule
from rich.text import Text

from .models import RunSummary
from .utils import format_bitrate, format_duration, format_size

console = Console()

SCENE_STAGES = ("extract", "encode", "measure")


def print_banner(version: str, log_file: Optional[str] = None,
                 out: Optional[Console] = None) -> None:
    out = out or console
    out.print(Rule(f"scenecoder v{version}", style="bold blue"))
    if log_file:
        out.print(Text(f"Log file: {log_file}", style="dim"))


def cache_line(hits: Mapping[str, int], misses: Mapping[str, int]) -> Text:
    """``extract 3 cached / 1 computed  encode ...`` for the per-scene stages"""
    line = Text()
    for stage in SCENE_STAGES:
        if line:
            line.append("  ")
        line.append(f"{stage} ", style="bold")
        line.append(f"{hits.get(stage, 0)} cached", style="green")
        line.append(" / ")
        line.append(f"{misses.get(stage, 0)} computed", style="yellow")
    return line


def print_run_summary(summary: RunSummary, out: Optional[Console] = None) -> None:
    """Cache usage, whole-video score and output of a finished run"""
    out = out or console
    out.print(cache_line(summary.stage_hits, summary.stage_misses))

    aggregate = summary.aggregate or {}
    if aggregate.get("score") is not None:
        out.print(Text.assemble(
            (f"{aggregate['metric']} ", "bold"),
            f"{aggregate['score']:.3f} frame-weighted over {aggregate['scenes']} scenes",
        ))
    if aggregate.get("bitrate"):
        out.print(
            f"{format_size(aggregate['bytes'])} at {format_bitrate(aggregate['bitrate'])}"
        )
    if summary.output_path is not None:
        out.print(Text.assemble(
            ("✓ ", "green"),
            (f"Wrote {summary.output_path} in {format_duration(summary.elapsed)}", "green"),
        ))


def print_scene_failures(failures: Dict[int, str], out: Optional[Console] = None) -> None:
    out = out or console
    for index, cause in failures.items():
        out.print(Text.assemble((f"scene {index:5d} ", "bold yellow"), cause))
    out.print(Text.assemble(
        ("✗ ", "bold red"),
        (f"{len(failures)} scene(s) failed; rerun to retry only those scenes", "bold"),
    ))


def print_error(message: str, out: Optional[Console] = None) -> None:
    out = out or console
    out.print(Text("✗ ", style="bold red") + Text(message, style="bold"))
