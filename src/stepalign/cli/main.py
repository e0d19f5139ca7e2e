"""
Main CLI entry point for stepalign.

Subcommands:
- tree build: grow a tree and alignment by stepwise sequence insertion
"""

from __future__ import annotations

import typer
from rich import print as rprint

from stepalign import __version__

app = typer.Typer(
    name="stepalign",
    help="Stepwise insertion of sequences into a growing phylogeny and alignment",
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"stepalign version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    stepalign: build a tree and alignment by inserting one sequence at a time.

    Each candidate is scored against the marginal ancestral profiles of the
    current tree (reconstructed with RAxML) and placed where it fits best.
    """


# Import subcommands
from stepalign.cli import tree

app.add_typer(tree.app, name="tree")


if __name__ == "__main__":
    app()
