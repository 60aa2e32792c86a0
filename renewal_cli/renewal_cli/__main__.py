"""Entry point for `python -m renewal_cli` and the `renewals` console script."""

from __future__ import annotations

from renewal_engine.config import load_settings
from renewal_engine.telemetry import configure_logging

from renewal_cli.app import app


def main() -> None:
    configure_logging(load_settings())
    app()


if __name__ == "__main__":
    main()
