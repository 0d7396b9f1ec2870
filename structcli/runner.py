"""
structcli runner: compile a command tree, parse argv, dispatch, and exit.

Lifecycle of run(root, prompt)
- validate: root must be a Node (InvalidRootError otherwise).
- build: the root parser takes prog/description/epilog from the root node and
  uses HelpFormatter; a --version switch is added when the root has a version.
- compile: root.configure(parser). Failures here are programmer errors and
  propagate untouched; nothing is parsed.
- parse: argparse reports unknown or malformed input itself (usage, exit 2).
- dispatch: the matched command's __handler__/__node__/__parser__ defaults are
  read back, "on_before_handler" plugins run, then the handler is called.
- conclude: the outcome is mapped to an ExitCode and the process exits.

Timeouts
- The handler runs in a daemon thread and the runner waits at most `timeout`
  seconds. A late handler is abandoned, not stopped: it keeps running until it
  returns or the process exits.
"""
import argparse
import shlex
import sys
import threading
from collections.abc import Iterable

from rich.console import Console
from rich.text import Text
from rich.traceback import Traceback

from .faults import *
from .faults import styles
from .formatter import HelpFormatter
from .nodes import Node
from .utils import *

console = Console(stderr=True)

# seconds (30 minutes)
DEFAULT_TIMEOUT = 1800


def _tokenize(prompt):
    """
    Normalize a prompt into argv tokens.

    - Unset: sys.argv[1:].
    - str: shell-like string, split with shlex.
    - Iterable[str]: used as-is (each item must be a string).
    """
    if prompt is Unset:
        return sys.argv[1:]
    elif isinstance(prompt, str):
        return shlex.split(prompt)
    elif isinstance(prompt, Iterable):
        tokens = list(prompt)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError("run() prompt must be a string or an iterable of strings")
        return tokens
    raise TypeError("run() prompt must be a string or an iterable of strings")


def _resolve_timeout(root, timeout):
    timeout = coalesce(timeout, getattr(root, "timeout", None) or DEFAULT_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, int | float):
        raise TypeError("run() timeout must be a number of seconds")
    elif timeout <= 0:
        raise ValueError("run() timeout must be positive")
    return timeout


def build(root, /):
    """
    Build the root parser for `root` and compile the whole tree into it.

    Returns
    - argparse.ArgumentParser ready to parse.
    """
    if not isinstance(root, Node):
        raise InvalidRootError("run() argument must be a node (app, category or command)")

    parser = argparse.ArgumentParser(
        prog=root.name,
        description=root.descr,
        epilog=root.epilog,
        formatter_class=HelpFormatter,
    )
    if root.version:
        parser.add_argument("--version", action="version", version=f"%(prog)s {root.version}")

    root.configure(parser)
    return parser


def _invoke(handler, args, timeout):
    """
    Call handler(args) in a daemon thread and wait up to `timeout` seconds.

    Raises
    - CommandTimeoutError: the handler did not finish in time.
    - whatever the handler raised.
    """
    outcome = {}

    def target():
        try:
            outcome["result"] = settle(handler(args))
        except BaseException as exception:
            outcome["exception"] = exception

    worker = threading.Thread(target=target, name="structcli-handler", daemon=True)
    worker.start()
    worker.join(timeout)

    if worker.is_alive():
        raise CommandTimeoutError(f"execution did not finish within {timeout:g} seconds")
    if "exception" in outcome:
        raise outcome["exception"]
    return outcome.get("result")


def _annotate(exception, handler, node, parser):
    exception.add_note(f"while running {" ".join(ancestor.name for ancestor in node.path)!r}")
    if isinstance(exception, CommandError):
        exception.parser = parser
        exception.node = node
        exception.handler = handler


def _conclude(root, exception):
    """
    Report a handler-time failure and return the matching ExitCode.

    InvalidError never returns: it goes through the matched parser's error()
    (usage + message, exit 2).
    """
    palette = styles()

    match exception:
        case InvalidError():
            exception.parser.error(exception.message)
        case HintError() | CommandTimeoutError():
            console.print(exception, soft_wrap=True)
            return exception.exit

    if isinstance(exception, CommandError):
        console.print(exception, soft_wrap=True)
    console.print(Traceback.from_exception(type(exception), exception, exception.__traceback__))

    if bugtracker := getattr(root, "bugtracker", None):
        console.print(Text.assemble(
            "this looks like a bug in ",
            Text(root.name, palette["prog-name"]),
            ", please report it at ",
            Text(bugtracker, palette["bugtracker"]),
        ), soft_wrap=True)
    else:
        console.print(Text.assemble(
            "this looks like a bug in ",
            Text(root.name, palette["prog-name"]),
            ", please report it to its maintainers",
        ), soft_wrap=True)
    return ExitCode.UNEXPECTED


def run(root, prompt=Unset, /, *, timeout=Unset):
    """
    Run a command tree against a prompt and exit the process.

    Parameters
    - root: Node (usually an App) describing the command tree.
    - prompt: Unset (sys.argv[1:]), a shell-like string, or an iterable of tokens.
    - timeout: seconds the handler may take; defaults to the root's timeout,
      then DEFAULT_TIMEOUT.

    Exit codes
    - ExitCode.SUCCESS (0), TIMEOUT (1), INVALID (2), HINT (3), UNEXPECTED (4).
      argparse keeps its own status (2) for malformed input and 0 for --help.

    Raises
    - SystemExit always, once the outcome is known.
    - InvalidRootError and any compilation error, before parsing starts.
    """
    if not isinstance(root, Node):
        raise InvalidRootError("run() argument must be a node (app, category or command)")
    tokens = _tokenize(prompt)
    timeout = _resolve_timeout(root, timeout)

    parser = build(root)
    args = parser.parse_args(tokens)

    if (handler := getattr(args, "__handler__", None)) is None:
        parser.error("a command is required")
    node = args.__node__
    leaf = args.__parser__

    try:
        node.run_plugins("on_before_handler", {
            "args": args,
            "node": node,
            "parser": leaf,
            "handler": handler,
        })
        _invoke(handler, args, timeout)
    except Exception as exception:
        _annotate(exception, handler, node, leaf)
        code = _conclude(root, exception)
    else:
        code = ExitCode.SUCCESS

    sys.exit(code)


__all__ = (
    "DEFAULT_TIMEOUT",
    "build",
    "run",
)
