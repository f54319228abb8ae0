# options.py
from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Optional

from pylxi.transport import LXI_SCPI_PORT

DISCOVER = "discover"
SCPI = "scpi"
SCREENSHOT = "screenshot"

DEFAULT_SCPI_COMMAND = "*IDN?"


@dataclass(frozen=True)
class Options:
    """Everything one run of the tool needs; built once from the command line."""
    command: str = SCPI
    timeout: float = 1.0
    ip: str = ""
    port: int = LXI_SCPI_PORT
    scpi_command: str = DEFAULT_SCPI_COMMAND
    dump_hex: bool = False
    filename: Optional[str] = None
    interactive: bool = False
    run_script: bool = False
    script: Optional[str] = None
    convert: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Options":
        """Freeze a parsed (and settings-completed) argparse namespace."""
        command = args.command
        if command == DISCOVER:
            return cls(command=command, timeout=float(args.timeout))

        common = dict(command=command, timeout=float(args.timeout), ip=args.ip or "",
                      port=int(args.port))
        if command == SCREENSHOT:
            return cls(filename=args.filename, convert=args.convert, **common)

        return cls(
            scpi_command=args.scpi_command or DEFAULT_SCPI_COMMAND,
            dump_hex=args.dump_hex,
            filename=args.dump_file,
            interactive=args.interactive,
            run_script=args.run_script is not None,
            script=args.run_script,
            **common,
        )
