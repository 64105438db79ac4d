# src/samplesort/__main__.py
from __future__ import annotations


def main() -> int:
    """
    Module entrypoint:
      - python -m samplesort            -> CLI help
      - python -m samplesort <command>  -> CLI command
    """
    from samplesort.cli import main as cli_main

    return int(cli_main())


if __name__ == "__main__":
    raise SystemExit(main())
