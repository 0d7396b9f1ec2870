r"""
structcli argument specifications.

Overview
- Specs
  • Option: a named flag-style argument, registered as "--name" (plus "-alias").
  • Param: a positional argument; params are order-significant.

- Resolution
  • switches(name) gives the option strings handed to argparse.
  • resolve(name) gives the keyword arguments handed to add_argument(); Unset
    metadata is left out so argparse applies its own defaults.

Metadata (sanitized on construction)
- Shared
  • type: callable converter; `bool` on an Option turns it into a presence switch.
  • choices: non-empty iterable (not a string), kept in declaration order.
  • default: any value; Unset leaves argparse's default in place.
  • required: bool.
  • descr: non-empty string shown as help.
  • dest: attribute name in the parsed namespace.
  • metavar: non-empty string (or tuple of strings) for help output.
  • nargs: "?", "*", "+" or a positive int.
- Option only
  • alias: short switch without its leading dash ("n" → "-n").
  • action: argparse action name or argparse.Action subclass; "help" and
    "version" are reserved.
  • group: title of the option group the spec should be stored under. The marker
    is stripped when the spec is stored (see Node.add_option).

Specs are immutable; use copy.replace(spec, **overrides) to derive a new one.
"""
import argparse
import functools
import operator
import re
from collections.abc import Iterable

from .utils import *


# Actions that take no value: argparse rejects type/nargs/choices/metavar for them.
_PRESENCE_ACTIONS = frozenset({
    "store_true",
    "store_false",
    "store_const",
    "append_const",
    "count",
})

# Registered by the runner (--version) and by argparse itself (-h/--help).
_RESERVED_ACTIONS = frozenset({
    "help",
    "version",
})


class ArgumentType(type):
    """
    Metaclass giving specs a readable identity.

    - __typename__ is the lower-cased class name (used in error messages).
    - Every name in __introspectable__ becomes a read-only property over "_name".
    - __repr__/__rich_repr__ list the declared (non-Unset) metadata only.
    """
    __introspectable__ = ()

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
        )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({
                ", ".join(map(functools.partial(operator.mod, "%s=%r"), self.__rich_repr__()))
            })"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in type(self).__introspectable__:
                if (object := getattr(self, "_" + name)) is not Unset:
                    yield name, object
        self.__rich_repr__ = __rich_repr__

        return self


def _sanitize_string(cls, metadata, name, /):
    if not isinstance(object := metadata[name], str | Unset):
        raise TypeError(f"{cls.__typename__} {name!r} must be a string")
    elif isinstance(object, str) and not (object := object.strip()):
        raise ValueError(f"{cls.__typename__} {name!r} cannot be empty")
    metadata[name] = object


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: validate and normalize spec metadata in place.

    Raises
    - TypeError: wrong type for a field.
    - ValueError: empty strings, empty choices, malformed alias/dest, bad nargs.
    """
    for name in ("descr", "dest", "group"):
        if name in metadata:
            _sanitize_string(cls, metadata, name)

    if metadata.get("dest") and not re.fullmatch(r"(?!\d)\w+", metadata["dest"]):
        raise ValueError(f"{cls.__typename__} 'dest' must be a valid identifier")

    if "alias" in metadata:
        _sanitize_string(cls, metadata, "alias")
        if metadata["alias"] and not re.fullmatch(r"[^\s-]\S*", metadata["alias"]):
            raise ValueError(f"{cls.__typename__} 'alias' must not start with a dash or contain spaces")

    if "action" in metadata:
        action = metadata["action"]
        if isinstance(action, type):
            if not issubclass(action, argparse.Action):
                raise TypeError(f"{cls.__typename__} 'action' class must derive from argparse.Action")
        else:
            _sanitize_string(cls, metadata, "action")
            if metadata["action"] in _RESERVED_ACTIONS:
                raise ValueError(f"{cls.__typename__} 'action' {metadata['action']!r} is reserved")

    if metadata["type"] is not Unset and not callable(metadata["type"]):
        raise TypeError(f"{cls.__typename__} 'type' must be callable")

    if (choices := metadata["choices"]) is not Unset:
        if isinstance(choices, str) or not isinstance(choices, Iterable):
            raise TypeError(f"{cls.__typename__} 'choices' must be an iterable of values")
        if not (choices := tuple(dict.fromkeys(choices))):
            raise ValueError(f"{cls.__typename__} 'choices' cannot be empty")
        metadata["choices"] = choices

    if not isinstance(metadata["required"], bool):
        raise TypeError(f"{cls.__typename__} 'required' must be a boolean")

    metavar = metadata["metavar"]
    if isinstance(metavar, tuple):
        if not metavar or not all(isinstance(x, str) and x.strip() for x in metavar):
            raise ValueError(f"{cls.__typename__} 'metavar' tuple must hold non-empty strings")
    else:
        _sanitize_string(cls, metadata, "metavar")

    match metadata["nargs"]:
        case UnsetType() | "?" | "*" | "+":
            pass
        case bool():
            raise TypeError(f"{cls.__typename__} 'nargs' must be '?', '*', '+' or an integer")
        case int() as nargs if nargs < 1:
            raise ValueError(f"{cls.__typename__} 'nargs' must be a positive integer")
        case int():
            pass
        case _:
            raise TypeError(f"{cls.__typename__} 'nargs' must be '?', '*', '+' or an integer")


def _is_empty(object):
    if object is Unset or object is None:
        return True
    try:
        return len(object) == 0
    except TypeError:
        return False


class Argument(metaclass=ArgumentType):
    """
    Common base of Option and Param; not meant to be instantiated directly.
    """
    __introspectable__ = ()

    def __init__(self, /, **metadata):
        if type(self) is Argument:
            raise TypeError("type 'Argument' cannot be instantiated directly, use Option or Param")
        _sanitize_metadata(type(self), metadata)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)

    @property
    def conflicting(self):
        """
        True when the spec is required and also carries a non-empty default.
        """
        return self._required and not _is_empty(self._default)

    def _resolve(self, **extra):
        arguments = {
            "type": self._type,
            "choices": self._choices,
            "default": self._default,
            "help": self._descr,
            "metavar": self._metavar,
            "nargs": self._nargs,
        } | extra
        return {name: object for name, object in arguments.items() if object is not Unset}

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(**{
            name: getattr(self, "_" + name) for name in type(self).__introspectable__
        } | overrides)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return all(
            getattr(self, "_" + name) == getattr(other, "_" + name) for name in type(self).__introspectable__
        )

    __hash__ = object.__hash__


class Option(Argument):
    """
    Flag-style argument registered as "--<name>" (and "-<alias>").

    The action defaults to "store", or "store_true" when type is bool.
    """
    __introspectable__ = (
        "alias",
        "action",
        "type",
        "choices",
        "default",
        "required",
        "descr",
        "dest",
        "metavar",
        "nargs",
        "group",
    )

    def __init__(
            self,
            *,
            alias=Unset,
            action=Unset,
            type=Unset,
            choices=Unset,
            default=Unset,
            required=False,
            descr=Unset,
            dest=Unset,
            metavar=Unset,
            nargs=Unset,
            group=Unset,
    ):
        super().__init__(
            alias=alias,
            action=action,
            type=type,
            choices=choices,
            default=default,
            required=required,
            descr=descr,
            dest=dest,
            metavar=metavar,
            nargs=nargs,
            group=group,
        )

    def switches(self, name, /):
        return ["--" + name] + (["-" + self._alias] if self._alias else [])

    def resolve(self, name, /):
        """
        Build the add_argument() keyword arguments for this option named `name`.
        """
        action = coalesce(self._action, "store_true" if self._type is bool else "store")
        arguments = self._resolve(
            action=action,
            required=self._required,
            dest=coalesce(self._dest, name.replace("-", "_")),
        )
        if action in _PRESENCE_ACTIONS:
            for key in ("type", "choices", "metavar", "nargs"):
                arguments.pop(key, None)
        return arguments


class Param(Argument):
    """
    Positional argument. Optional (nargs="?") unless required, in which case
    exactly one value is expected; an explicit nargs always wins.
    """
    __introspectable__ = (
        "type",
        "choices",
        "default",
        "required",
        "descr",
        "dest",
        "metavar",
        "nargs",
    )

    def __init__(
            self,
            *,
            type=Unset,
            choices=Unset,
            default=Unset,
            required=False,
            descr=Unset,
            dest=Unset,
            metavar=Unset,
            nargs=Unset,
    ):
        super().__init__(
            type=type,
            choices=choices,
            default=default,
            required=required,
            descr=descr,
            dest=dest,
            metavar=metavar,
            nargs=nargs,
        )

    def switches(self, name, /):
        # argparse takes the destination of a positional from its only name
        return [coalesce(self._dest, name.replace("-", "_"))]

    def resolve(self, name, /):
        """
        Build the add_argument() keyword arguments for this param named `name`.
        """
        nargs = self._nargs
        if nargs is Unset and not self._required:
            nargs = "?"
        metavar = self._metavar
        if metavar is Unset and self.switches(name)[0] != name:
            metavar = name
        return self._resolve(nargs=nargs, metavar=metavar)


__all__ = (
    "Argument",
    "Option",
    "Param",
)
