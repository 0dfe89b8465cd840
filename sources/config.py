# config.py
"""
Command line / environment options and the tuning constants of the
discovery pipeline.

Environment variables take precedence over command line arguments, the
same way the help text advertises it.
"""

import argparse
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

# ----------------------------------------------------------------------
# Tuning constants
# ----------------------------------------------------------------------
PRESENCE_WINDOW_S = 5.0       # device considered gone after this silence
DEBOUNCE_DELAY_S = 0.1        # "devices updated" refresh cadence
PRUNE_INTERVAL_S = 1.0        # independent prune tick while scanning
READY_TIMEOUT_S = 30.0        # adapter power-on wait, None = forever
READY_POLL_INTERVAL_S = 1.0   # retry period of the readiness check

DEFAULT_LOG_FILE = "app.log"
LOG_OUTPUTS = ("file", "null")

APP_TITLE = "Smart Scale BLE Client"

EPILOG = """\
Environment Variables:
  DEBUG=true                 Enable debug logging
  LOG_OUTPUT=file|null       Set logging output
  LOG_FILE=<filename>        Set log filename (when LOG_OUTPUT=file)

Examples:
  scale-client --log-file scale.log    # Log to scale.log
  scale-client --no-logs               # No logging
  scale-client --debug                 # Debug mode with file logging
"""


@dataclass
class AppOptions:
    log_output: str = "null"
    log_file: str = DEFAULT_LOG_FILE
    debug: bool = False


class _LogFileAction(argparse.Action):
    """``-f NAME`` selects file output and the file name in one go."""

    def __call__(self, parser, namespace, values, option_string=None):
        namespace.log_file = values
        namespace.log_output = "file"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scale-client",
        description=f"{APP_TITLE} - discover BLE scales and stream weight/battery.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.set_defaults(log_output="null", log_file=DEFAULT_LOG_FILE)
    parser.add_argument(
        "-f",
        "--log-file",
        metavar="FILENAME",
        action=_LogFileAction,
        help=f"Log to file (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "-n",
        "--no-logs",
        dest="log_output",
        action="store_const",
        const="null",
        help="Suppress all logging",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging (implies file logging)",
    )
    return parser


def parse_options(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppOptions:
    """
    Parse ``argv`` and apply the environment overrides.

    ``--help`` exits with status 0 through argparse; an unparseable
    argument exits with status 2.
    """
    env = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    log_output = args.log_output
    log_file = args.log_file
    debug = bool(args.debug)

    env_output = env.get("LOG_OUTPUT")
    if env_output:
        if env_output not in LOG_OUTPUTS:
            raise SystemExit(f"LOG_OUTPUT must be one of {', '.join(LOG_OUTPUTS)}")
        log_output = env_output
    if env.get("LOG_FILE"):
        log_file = env["LOG_FILE"]
    if env.get("DEBUG") == "true":
        debug = True

    # debug without an explicit destination defaults to file logging
    if debug and log_output == "null" and not env_output:
        log_output = "file"

    if log_output == "file":
        return AppOptions(log_output="file", log_file=log_file, debug=debug)
    return AppOptions(log_output="null", log_file=log_file, debug=False)
