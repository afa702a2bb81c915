"""Command-line interface."""

# Load the command group first so subcommand modules can import it without a cycle.
from studybuddy.cli import app as app  # noqa: E402,F401
