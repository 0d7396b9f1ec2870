"""
structcli faults (errors, warnings and exit codes).

Scope
- ExitCode: the process exit statuses produced by run().
- CommandError and its kinds: raised by handler authors (and by plugins right
  before a handler runs) to tell the runner how a failure should surface.
  Every kind carries a message, optional structured data and a stable string
  code (E_BADREQUEST, E_HINT, ...).
- Configuration errors: programmer mistakes found while a command tree is
  assembled or compiled. They are never mapped to exit codes; they propagate.
- Configuration warnings: suspicious but legal declarations, emitted through
  the warnings module.

Rendering
- CommandError knows how to render itself through rich (__rich__). Colors come
  from a default palette that the host application may override with a
  __styles__ mapping in __main__.
"""
from collections import defaultdict
from enum import IntEnum

from rich.console import Group
from rich.text import Text

from .utils import Unset, coalesce


class ExitCode(IntEnum):
    """
    process exit statuses used by run().

    - SUCCESS: the handler returned (or its awaitable resolved).
    - TIMEOUT: the handler did not finish within the configured duration.
    - INVALID: the handler rejected its arguments (InvalidError); reported
      through the argument parser's own error path.
    - HINT: the handler raised a HintError carrying user guidance.
    - UNEXPECTED: anything else; a traceback and a bug-report pointer are shown.
    """
    SUCCESS    = 0
    TIMEOUT    = 1
    INVALID    = 2
    HINT       = 3
    UNEXPECTED = 4


def styles():
    """
    return the rendering palette, merged with __main__.__styles__ when present.
    """
    return defaultdict(str, {
        "prog-name": "bold #E6E6F0",
        "code": "bold #00E5FF",
        "error-title": "bold #FF4DA6",
        "error-message": "#C8C8D0",
        "hint-arrow": "#9CE19C dim",
        "hint": "italic #9CE19C",
        "bugtracker": "underline #00E5FF",
    } | getattr(__import__("__main__"), "__styles__", {}))


class CommandError(Exception):
    """
    base type for every failure a handler may raise on purpose.

    attributes
    - message: human-readable text (empty string when not given).
    - data: optional structured payload for programmatic consumers.
    - code: stable string identifier of the kind.
    - exit: the ExitCode the runner maps this kind to.
    - parser, node, handler: filled in by the runner once the failure crosses
      the run() boundary (None before that).
    """
    code = "E_COMMAND"
    title = "command error"
    exit = ExitCode.UNEXPECTED

    def __init__(self, message=Unset, /, data=Unset):
        if not isinstance(message, str | Unset):
            raise TypeError(f"{type(self).__name__} 'message' must be a string")
        super().__init__(*(() if message is Unset else (message,)))
        self.message = coalesce(message, "")
        self.data = coalesce(data)
        self.parser = None
        self.node = None
        self.handler = None

    def __rich__(self):
        palette = styles()
        prog = self.node.root.name if self.node is not None else None
        header = Text.assemble(
            "[ ",
            *((Text(prog, palette["prog-name"]), " — ") if prog else ()),
            Text(self.code, palette["code"]),
            " | ",
            Text(self.title.title(), palette["error-title"]),
            " ]"
        )
        if not self.message:
            return header
        return Group(header, Text(self.message, palette["error-message"]))

    def __str__(self):
        return self.message


class BadRequestError(CommandError):
    code = "E_BADREQUEST"
    title = "bad request"


class CancelledError(CommandError):
    code = "E_CANCELLED"
    title = "cancelled"


class HintError(CommandError):
    """
    user-facing guidance (e.g. "did you mean --dry-run?"); printed as-is, exit 3.
    """
    code = "E_HINT"
    title = "hint"
    exit = ExitCode.HINT

    def __rich__(self):
        palette = styles()
        return Text.assemble(Text(" → ", palette["hint-arrow"]), Text(self.message, palette["hint"]))


class InvalidError(CommandError):
    """
    the arguments were syntactically fine but semantically invalid; exit 2.
    """
    code = "E_INVALID"
    title = "invalid"
    exit = ExitCode.INVALID


class NotFoundError(CommandError):
    code = "E_NOTFOUND"
    title = "not found"


class ServerError(CommandError):
    code = "E_SERVERERROR"
    title = "server error"


class CommandTimeoutError(CommandError):
    """
    synthesized by the runner when a handler outlives its allowed duration.
    """
    code = "E_TIMEOUT"
    title = "timeout"
    exit = ExitCode.TIMEOUT


class InvalidRootError(TypeError):
    """run() was given something that is not a command tree node."""


class DuplicateGroupError(ValueError):
    """an option group title was declared twice on the same node."""


class DuplicateNameError(ValueError):
    """a sibling node, option or param name is already in use."""


class AttachmentError(ValueError):
    """a node was attached twice, or attaching it would create a cycle."""


class ConfigurationWarning(Warning):
    """suspicious but legal declaration in a command tree."""


class RequiredDefaultWarning(ConfigurationWarning):
    """an argument is both required and given a non-empty default."""


__all__ = (
    "ExitCode",
    "CommandError",
    "BadRequestError",
    "CancelledError",
    "HintError",
    "InvalidError",
    "NotFoundError",
    "ServerError",
    "CommandTimeoutError",
    "InvalidRootError",
    "DuplicateGroupError",
    "DuplicateNameError",
    "AttachmentError",
    "ConfigurationWarning",
    "RequiredDefaultWarning",
)
