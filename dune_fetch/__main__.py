"""Run one Dune fetch and print the bundle as JSON: `python -m dune_fetch`."""

import asyncio
import json
import logging
import sys

from dune_fetch.pipeline import fetch_dune_data


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s", stream=sys.stderr)
    json.dump(asyncio.run(fetch_dune_data()), sys.stdout, indent=2)
    sys.stdout.write("\n")


if __name__ == "__main__":
    main()
