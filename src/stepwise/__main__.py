"""Entry point for running stepwise as a module.

Usage:
    python -m stepwise
"""

from stepwise.cli.app import app


def main() -> None:
    """Main entry point for the stepwise CLI."""
    app()


if __name__ == "__main__":
    main()
