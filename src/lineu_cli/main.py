"""lineu CLI - Main entry point."""

import typer

from lineu_cli.analyze import run_test
from lineu_cli.server import serve
from lineu_cli.stats import show_fingerprint, show_stats

app = typer.Typer(
    help="lineu - Error webhook to code analysis to Linear",
    no_args_is_help=True,
)

app.command("serve")(serve)
app.command("test")(run_test)
app.command("stats")(show_stats)
app.command("fingerprint")(show_fingerprint)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
