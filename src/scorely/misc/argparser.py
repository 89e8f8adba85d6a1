from __future__ import annotations

from argparse import ArgumentParser
from typing import TYPE_CHECKING, NamedTuple, cast

from rich_argparse import RichHelpFormatter

from .logging_conf import LOG_ABBREV_2_LVL, LOG_LVL_2_COLOR

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .logging_conf import LogLvl


def _mk_parser() -> ArgumentParser:
    RichHelpFormatter.usage_markup = True
    RichHelpFormatter.styles.update(
        {
            "argparse.args": "cyan",
            "argparse.groups": "green bold",
            "argparse.metavar": "dim cyan",
            "argparse.usage": "dim cyan",
            "argparse.prog": "cyan bold",
        },
    )

    parser = ArgumentParser(
        description="Live session & pairing engine for Scorely bracelets",
        formatter_class=RichHelpFormatter,
        usage="%(prog)s [cyan]\\[options][/]",
    )

    arg = parser.add_argument

    log_lvl_choices = ", ".join(
        f"[{clr}]{abbr}[/]" for abbr, clr in zip(LOG_ABBREV_2_LVL, LOG_LVL_2_COLOR.values(), strict=True)
    )

    arg(
        "-l",
        "--log-level",
        type=str,
        default="INF",
        help=f"base logging level (default: [yellow]INF[/])\t[{log_lvl_choices}]",
        choices=LOG_ABBREV_2_LVL,
        dest="log_level",
        metavar="L",
    )
    arg(
        "--host",
        default="0.0.0.0",  # noqa: S104
        help="HTTP bind address (default: [yellow]0.0.0.0[/])",
        metavar="ADDR",
    )
    arg(
        "--no-api",
        action="store_true",
        help="run the MQTT engine only, without the HTTP API",
        dest="no_api",
    )
    return parser


class _Args(NamedTuple):
    log_level: LogLvl
    host: str
    no_api: bool


def get_cli_args(argv: Sequence[str] | None = None) -> _Args:
    """Create & return parsed arguments."""

    parser = _mk_parser()
    args = parser.parse_args(argv)

    return _Args(
        log_level=LOG_ABBREV_2_LVL[cast("str", args.log_level)],
        host=args.host,
        no_api=args.no_api,
    )
