"""Entry point for `python -m fleetpay_cli` and the `fleetpay` console script."""

from __future__ import annotations

from fleetpay_cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
