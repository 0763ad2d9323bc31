"""Small declarative layer over argparse for the planner CLI.

Commands register through decorators; ``@argument`` lines sit between the
``@command`` line and the function (decorators apply bottom-up, so the
arguments are collected first). Groups give two-level commands such as
``rrule decode``. Common flags (``--config``, ``--db``, ``--verbose``) live
on the top-level parser and therefore precede the command name.
"""
from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .cli_errors import ExitCode, handle_error

CommandFunc = Callable[[argparse.Namespace], int]


@dataclass
class Argument:
    name_or_flags: tuple
    kwargs: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommandDef:
    name: str
    func: CommandFunc
    help: str = ""
    arguments: List[Argument] = field(default_factory=list)


class _Registry:
    """Holds commands plus the arguments waiting for the next ``@command``."""

    def __init__(self, pending: Optional[List[Argument]] = None) -> None:
        self._commands: Dict[str, CommandDef] = {}
        self._pending = pending if pending is not None else []

    def argument(self, *name_or_flags: str, **kwargs: Any) -> Callable[[CommandFunc], CommandFunc]:
        def decorator(func: CommandFunc) -> CommandFunc:
            self._pending.append(Argument(name_or_flags, kwargs))
            return func
        return decorator

    def command(self, name: str, *, help: str = "") -> Callable[[CommandFunc], CommandFunc]:
        def decorator(func: CommandFunc) -> CommandFunc:
            # Collected bottom-up; reverse to declaration order.
            arguments = list(reversed(self._pending))
            self._pending.clear()
            self._commands[name] = CommandDef(name=name, func=func, help=help, arguments=arguments)
            return func
        return decorator

    def _add_commands(self, subparsers: Any) -> None:
        for cmd_def in self._commands.values():
            sub = subparsers.add_parser(cmd_def.name, help=cmd_def.help, description=cmd_def.help)
            for arg in cmd_def.arguments:
                sub.add_argument(*arg.name_or_flags, **arg.kwargs)
            sub.set_defaults(_cmd_func=cmd_def.func)


class CommandGroup(_Registry):
    """Nested commands under one name (``rrule encode``, ``rrule decode``)."""

    def __init__(self, name: str, help: str, pending: List[Argument]) -> None:
        super().__init__(pending)
        self.name = name
        self.help = help


class CLIApp(_Registry):
    """Argparse application with decorator-registered commands.

    Example::

        app = CLIApp("study-planner", "Study planner maintenance CLI")

        @app.command("recalc", help="Recalculate course hours")
        @app.argument("--owner", help="Restrict to one owner")
        def cmd_recalc(args):
            return 0
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        *,
        version: Optional[str] = None,
        epilog: Optional[str] = None,
        add_common_args: bool = True,
    ):
        super().__init__()
        self.name = name
        self.description = description
        self.version = version
        self.epilog = epilog
        self.add_common_args = add_common_args
        self._groups: Dict[str, CommandGroup] = {}

    def group(self, name: str, *, help: str = "") -> CommandGroup:
        # Groups share the pending list so app.argument and group.argument mix freely.
        group = CommandGroup(name, help, self._pending)
        self._groups[name] = group
        return group

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog=self.name,
            description=self.description,
            epilog=self.epilog,
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        if self.version:
            parser.add_argument("--version", "-V", action="version", version=f"%(prog)s {self.version}")
        if self.add_common_args:
            parser.add_argument("--config", help="Path to config.yaml")
            parser.add_argument("--db", help="Path to the SQLite database (overrides config)")
            parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

        subparsers = parser.add_subparsers(dest="command", metavar="<command>")
        for group in self._groups.values():
            group_parser = subparsers.add_parser(group.name, help=group.help, description=group.help)
            group._add_commands(group_parser.add_subparsers(dest=f"{group.name}_cmd", metavar="<subcommand>"))
        self._add_commands(subparsers)
        return parser

    def run(self, argv: Optional[Sequence[str]] = None) -> int:
        """Parse ``argv``, configure logging and dispatch; returns the exit code."""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        verbose = bool(getattr(args, "verbose", False))
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(levelname)s %(name)s: %(message)s",
        )

        cmd_func = getattr(args, "_cmd_func", None)
        if cmd_func is None:
            parser.print_help()
            return int(ExitCode.USAGE)
        try:
            return int(cmd_func(args))
        except (Exception, KeyboardInterrupt) as exc:
            return handle_error(exc, verbose=verbose)
