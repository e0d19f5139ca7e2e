"""
Tree command for stepwise insertion.

Provides subcommands:
- build: Grow a tree and alignment from a FASTA file
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from stepalign.cli.utils import QuietConsole, configure_logging, spinner_progress
from stepalign.core.exceptions import StepalignError
from stepalign.external.raxml import RAxMLAncestral
from stepalign.models.config import StepalignConfig

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="tree",
    help="Build trees and alignments by stepwise insertion",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()


def _default_scores_path(fasta: Path) -> Path:
    return fasta.with_name(fasta.name + ".scores.csv")


@app.command(name="build")
def build(
    fasta: Path = typer.Option(
        ...,
        "--fasta",
        "-f",
        help="Input sequences (FASTA)",
        exists=True,
        dir_okay=False,
    ),
    threads: int | None = typer.Option(
        None,
        "--threads",
        "-j",
        help="Threads for the all-pairs alignment scores [default: all cores]",
        min=1,
    ),
    newview_threads: int | None = typer.Option(
        None,
        "--newview-threads",
        "-k",
        help="Threads for ancestral vector updates (accepted, currently unused)",
        min=1,
    ),
    load_scores: bool = typer.Option(
        False,
        "--load-scores",
        "-l",
        help="Reuse the cached score matrix if present, otherwise compute and cache it",
    ),
    scores_path: Path | None = typer.Option(
        None,
        "--scores",
        help="Score matrix cache [default: <fasta>.scores.csv]",
        dir_okay=False,
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output Newick tree [default: <fasta>.tree.nwk]",
    ),
    alignment_output: Path | None = typer.Option(
        None,
        "--alignment-output",
        "-a",
        help="Output alignment, relaxed PHYLIP [default: <fasta>.ali.phy]",
    ),
    workdir: Path | None = typer.Option(
        None,
        "--workdir",
        "-w",
        help="Directory for ancestral reconstruction runs [default: <fasta>.work]",
        file_okay=False,
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file",
        exists=True,
        dir_okay=False,
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="Ancestral vector model: probgap or parsimony",
    ),
    max_insertions: int | None = typer.Option(
        None,
        "--max-insertions",
        "-n",
        help="Stop after this many insertions",
        min=0,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Build a tree and alignment by inserting sequences one at a time.

    The two closest sequences (and a clone of each) seed a four-taxon tree.
    Every further sequence is aligned against the marginal ancestral
    profiles of all attachment points and inserted at the best one.

    Examples:

        # Insert all sequences, 8 threads for the score matrix
        stepalign tree build -f seqs.fasta -j 8

        # Reuse cached scores and stop after 10 insertions
        stepalign tree build -f seqs.fasta -l --max-insertions 10
    """
    from stepalign.core.addition_order import AdditionOrder
    from stepalign.core.insertion import StepwiseInserter
    from stepalign.core.pairwise import load_score_matrix, pairwise_score_matrix, save_score_matrix
    from stepalign.core.sequences import NamedSequenceSet

    configure_logging(verbose)
    out = QuietConsole(console, quiet=quiet)

    try:
        config = StepalignConfig.from_yaml(config_file) if config_file else StepalignConfig()
        config = config.with_overrides(
            **{
                "alignment_threads": threads or (None if config_file else os.cpu_count()),
                "newview_threads": newview_threads,
                "insertion.vector_model": model,
                "insertion.max_insertions": max_insertions,
            }
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    scores_path = scores_path or _default_scores_path(fasta)
    output = output or fasta.with_name(fasta.name + ".tree.nwk")
    alignment_output = alignment_output or fasta.with_name(fasta.name + ".ali.phy")
    workdir = workdir or fasta.with_name(fasta.name + ".work")

    out.print("\n[bold blue]stepalign Tree Builder[/bold blue]\n")
    out.print(f"[bold]Sequences:[/bold] {fasta}")
    out.print(f"[bold]Vector model:[/bold] {config.insertion.vector_model}")
    out.print(f"[bold]Alignment threads:[/bold] {config.alignment_threads}")
    if config.newview_threads > 1:
        logger.warning(
            "newview threads (%d) requested; ancestral vectors are updated sequentially",
            config.newview_threads,
        )

    try:
        sequences = NamedSequenceSet.from_fasta(fasta)
        out.print(f"[bold]Loaded:[/bold] {len(sequences)} sequences")

        if load_scores and scores_path.exists():
            scores = load_score_matrix(scores_path, sequences.names)
            out.print(f"[bold]Scores:[/bold] loaded from {scores_path}")
        else:
            with spinner_progress(
                f"Aligning {len(sequences)} sequences pairwise...", console, quiet
            ):
                scores = pairwise_score_matrix(
                    [s.raw for s in sequences], config.scoring, config.alignment_threads
                )
            if load_scores:
                save_score_matrix(scores, sequences.names, scores_path)
                out.print(f"[bold]Scores:[/bold] cached in {scores_path}")

        order = AdditionOrder()
        order.initialize(scores)

        inserter = StepwiseInserter(sequences, order, RAxMLAncestral(config.raxml), config)
        with spinner_progress("Inserting sequences...", console, quiet):
            results = inserter.run(workdir)

        inserter.write_tree(output)
        inserter.write_alignment(alignment_output)

    except StepalignError as e:
        console.print(f"[red]Error: {escape(e.full_message)}[/red]")
        raise typer.Exit(code=1) from None

    for result in results:
        logger.info("%s -> node %d (score %.4f)", result.name, result.label, result.score)

    out.print(f"\n[bold green]Inserted {len(results)} sequences.[/bold green]")
    out.print(f"[bold]Tree:[/bold] {output}")
    out.print(f"[bold]Alignment:[/bold] {alignment_output}")
    out.print()
