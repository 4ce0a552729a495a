from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from . import async_run
from .config import ConfigError, load_config


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="bambu_obs", description="Mirror a Bambu printer's status into an OBS overlay."
    )
    parser.add_argument("config", nargs="?", default="connection.json", help="JSON config file")
    parser.add_argument("--log-level", help="override app.log_level")
    args = parser.parse_args(argv)

    try:
        settings = load_config(args.config)
    except ConfigError as e:
        print(e, file=sys.stderr)
        return 2

    logging.basicConfig(
        level=(args.log_level or settings.app.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    return asyncio.run(async_run(settings))


if __name__ == "__main__":
    sys.exit(main())
