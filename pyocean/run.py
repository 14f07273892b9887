import argparse
import datetime
import logging
import sys

from . import config as _config
from . import debug
from . import parallel


def run():
    parser = argparse.ArgumentParser(description="Run a pyocean simulation")
    parser.add_argument(
        "configuration", help="Path to configuration file in yaml format"
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Continue even if unknown configuration settings are encountered",
    )
    parser.add_argument(
        "-r", "--report", type=int, help="Reporting interval", default=100
    )
    parser.add_argument(
        "-l",
        "--log",
        type=str,
        help="Log level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default="INFO",
    )
    args = parser.parse_args()

    logger = parallel.get_logger(level=args.log.upper())

    config = _config.configure(args.configuration)
    simulation = _config.build_simulation(config, logger)
    start = config.get("time/start", datetime.datetime(2000, 1, 1))

    unused = config.check()
    if unused:
        level = logging.WARNING if args.force else logging.ERROR
        logger.log(
            level,
            "The following setting(s) in %s are not recognized:" % args.configuration,
        )
        for path in unused:
            logger.log(level, "- %s" % path)
        if not args.force:
            logger.error(
                "If you want to ignore these settings, provide the argument -f/--force."
            )
            sys.exit(2)
        logger.warning(
            "The simulation will continue because you specified -f/--force,"
            " but these settings will not be used."
        )

    simulation.run(start, report=args.report, check_finite=True)
    for field in simulation.model.fields.values():
        debug.log_range(field, logger)
    logger.info("Simulation complete")


if __name__ == "__main__":
    run()
