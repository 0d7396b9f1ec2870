"""
structcli node layer: declare a command tree and compile it into argparse.

What this module provides
- Node: abstract identity shared by every element of the tree (name, help
  metadata, options, option groups, plugins, parent back-reference).
- Category: a branch holding ordered children; compiles into a parser with
  subcommands.
- Command: a leaf bound to a handler, with options and order-significant params;
  compiles into one parser endpoint.
- App: the root category; carries the metadata used for the root parser and
  the runner (version, epilog, bugtracker, timeout).
- Factories app(...), category(...), command(...) (command also works as a
  decorator).

Compilation
- configure(parser) runs the "on_before_configure" plugins, registers the
  node's option groups, ungrouped options and (for commands) params, then
  recurses into children. Commands leave three defaults on their parser:
  __handler__, __node__ and __parser__, which the runner reads back after parsing.
- A category's subparsers are stored under "<name>_command"; a category may
  not reuse the name of an ancestor category.

Plugins
- Any object may be a plugin. For an event named "on_before_configure" the
  node looks up a callable attribute of that name on each plugin, in attachment
  order, and calls it with a read-only payload mapping.

Quick start
    from structcli import App, Category, Command, Option, run

    tool = App("tool", version="1.0.0")
    db = tool.category("db", descr="database maintenance")

    @db.command(options={"dry-run": Option(type=bool, alias="n")})
    def migrate(args):
        "apply pending migrations"
        print("dry run" if args.dry_run else "migrating")

    if __name__ == "__main__":
        run(tool)
"""
import copy
import functools
import inspect
import operator
import os.path
import re
import sys
import warnings
import weakref
from abc import ABCMeta, abstractmethod
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from .arguments import Option, Param
from .faults import AttachmentError, DuplicateGroupError, DuplicateNameError, RequiredDefaultWarning
from .utils import *


class NodeType(ABCMeta):
    """
    Metaclass for tree nodes.

    - __typename__ is derived from the class name for messages ("category", "app").
    - Every name in __introspectable__ becomes a read-only property over "_name".
    - __repr__/__rich_repr__ show the fields listed in __displayable__ (or all
      introspectable fields when it is not set).
    """
    __introspectable__ = ()
    __displayable__ = Unset

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
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


_NAME = re.compile(r"[A-Za-z_][\w-]*")


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: validate node metadata in place.

    - name: required, must look like a command word ("db", "add-user").
    - descr, version, epilog, bugtracker: optional non-empty strings (trimmed).

    Raises TypeError for wrong types and ValueError for empty or malformed values.
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} 'name' must be a string")
    elif not _NAME.fullmatch(name):
        raise ValueError(f"{cls.__typename__} 'name' must be a non-empty identifier, got {name!r}")

    for name in ("descr", "version", "epilog", "bugtracker"):
        if name not in metadata:
            continue
        if not isinstance(object := metadata[name], str | Unset):
            raise TypeError(f"{cls.__typename__} {name!r} must be a string")
        elif isinstance(object, str) and not (object := object.strip()):
            raise ValueError(f"{cls.__typename__} {name!r} cannot be empty")
        metadata[name] = object


def _resolve_spec(node, factory, name, spec, metadata, /):
    """
    Internal: turn add_option()/add_param() input into a validated spec.

    Accepts an Option/Param instance, a mapping of its metadata, or bare keyword
    metadata. Warns (RequiredDefaultWarning) when the spec is both required and
    defaulted.
    """
    if not isinstance(name, str):
        raise TypeError(f"{type(node).__typename__} {factory.__typename__} name must be a string")
    elif not _NAME.fullmatch(name):
        raise ValueError(f"{type(node).__typename__} {factory.__typename__} name {name!r} is not a valid identifier")

    if spec is Unset:
        spec = factory(**metadata)
    elif metadata:
        raise TypeError(f"{type(node).__typename__} {factory.__typename__} takes a spec or metadata, not both")
    elif isinstance(spec, Mapping):
        spec = factory(**spec)
    elif not isinstance(spec, factory):
        raise TypeError(f"{type(node).__typename__} {factory.__typename__} {name!r} must be a {factory.__name__}")

    if spec.conflicting:
        warnings.warn(RequiredDefaultWarning(
            f"{factory.__typename__} {name!r} of {type(node).__typename__} {node.name!r} "
            f"is required, its default {spec.default!r} is never used"
        ), stacklevel=3)
    return spec


class Node(metaclass=NodeType):
    """
    Abstract element of a command tree.

    Responsibilities
    - Identity and help metadata (name, descr, version, epilog).
    - Option registry: ungrouped options plus titled option groups (groups only
      cluster help output; they do not change parsing).
    - Plugin list and the sequential hook runner (run_plugins).
    - Parent back-reference, set exactly once.

    Subclasses implement configure(parser).
    """
    __introspectable__ = (
        "name",
        "descr",
        "version",
        "epilog",
        "options",
        "option_groups",
        "plugins",
    )

    __displayable__ = (
        "name",
        "descr",
    )

    def __init__(
            self,
            name,
            /,
            *,
            descr=Unset,
            version=Unset,
            epilog=Unset,
            options=Unset,
            option_groups=Unset,
            plugins=(),
    ):
        metadata = {
            "name": name,
            "descr": descr,
            "version": version,
            "epilog": epilog,
        }
        _sanitize_metadata(type(self), metadata)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)

        self._options = {}
        self._option_groups = {}
        self._implicit = set()
        self._plugins = []
        self._parent = None

        for name, option in dict(coalesce(options, {})).items():
            self.add_option(name, option)
        for title, group in dict(coalesce(option_groups, {})).items():
            self.add_option_group(title, group)
        if not isinstance(plugins, Iterable):
            raise TypeError(f"{type(self).__typename__} 'plugins' must be an iterable")
        for plugin in plugins:
            self.add_plugin(plugin)

    @property
    def parent(self):
        """
        The owning category, or None for a root (or when the owner was collected).
        """
        return self._parent() if self._parent is not None else None

    @property
    def root(self):
        """
        Return the topmost node of the tree this node belongs to.
        """
        child, parent = self, self.parent
        while parent:
            child, parent = parent, parent.parent
        return child

    @property
    def path(self):
        """
        Return the ancestry from root to this node as a tuple.
        """
        path = [node := self]
        while node.parent:
            path.append(node := node.parent)
        return tuple(reversed(path))

    def _names(self):
        names = set(self._options)
        for group in self._option_groups.values():
            names.update(group)
        return names

    def add_option(self, name, option=Unset, /, **metadata):
        """
        Declare an option on this node.

        Parameters
        - name: option name; registered as "--name".
        - option: Option | Mapping | Unset. When Unset, `metadata` is used to
          build the Option.

        Behavior
        - An option with a group marker is stored in that group (created on
          demand) and the marker is stripped; otherwise it is stored ungrouped.

        Raises
        - DuplicateNameError: the name is already declared on this node.

        Returns
        - the stored Option.
        """
        option = _resolve_spec(self, Option, name, option, metadata)
        if name in self._names():
            raise DuplicateNameError(f"{type(self).__typename__} option name {name!r} is already in use")

        if option.group is None:
            self._options[name] = option
            return option

        if (title := option.group) not in self._option_groups:
            self._option_groups[title] = {}
            self._implicit.add(title)
        self._option_groups[title][name] = option = copy.replace(option, group=Unset)
        return option

    def add_option_group(self, title, options=Unset, /):
        """
        Declare a titled option group, optionally with its options.

        A group first created implicitly by add_option(..., group=title) is
        claimed here without error, so declaration order does not matter.

        Raises
        - DuplicateGroupError: the group was already declared explicitly.

        Returns
        - a read-only view of the group's options.
        """
        if not isinstance(title, str):
            raise TypeError(f"{type(self).__typename__} option group title must be a string")
        elif not (title := title.strip()):
            raise ValueError(f"{type(self).__typename__} option group title cannot be empty")

        if title in self._option_groups and title not in self._implicit:
            raise DuplicateGroupError(f"{type(self).__typename__} option group {title!r} already exists")
        self._implicit.discard(title)
        group = self._option_groups.setdefault(title, {})

        for name, option in dict(coalesce(options, {})).items():
            if isinstance(option, Mapping):
                option = Option(**option)
            elif not isinstance(option, Option):
                raise TypeError(f"{type(self).__typename__} option {name!r} must be an Option")
            self.add_option(name, copy.replace(option, group=title))
        return MappingProxyType(group)

    def add_plugin(self, plugin, /):
        """
        Attach a plugin; hooks run in attachment order.
        """
        if plugin is None:
            raise TypeError(f"{type(self).__typename__} plugin cannot be None")
        self._plugins.append(plugin)
        return plugin

    def run_plugins(self, event, payload, /):
        """
        Run the `event` callback of every plugin that defines it.

        Behavior
        - Callbacks are collected first, in attachment order, then called one at a
          time with a read-only copy of `payload`.
        - An awaitable result is driven to completion before the next callback.
        - The first failure propagates and the remaining callbacks are skipped.
        """
        if not isinstance(event, str):
            raise TypeError("run_plugins() event must be a string")
        callbacks = [
            callback for plugin in self._plugins if callable(callback := getattr(plugin, event, None))
        ]
        payload = MappingProxyType(dict(payload))
        for callback in callbacks:
            settle(callback(payload))

    def set_parent(self, parent, /):
        """
        Record `parent` as the owner of this node.

        The back-reference is weak and can be set only once.

        Raises
        - AttachmentError: the node already has a parent.
        """
        if not isinstance(parent, Node):
            raise TypeError(f"{type(self).__typename__} parent must be a node")
        if self._parent is not None:
            raise AttachmentError(f"{type(self).__typename__} {self.name!r} is already attached to a parent")
        self._parent = weakref.ref(parent)

    def _configure_options(self, parser):
        for title, options in self._option_groups.items():
            group = parser.add_argument_group(title)
            for name, option in options.items():
                group.add_argument(*option.switches(name), **option.resolve(name))
        for name, option in self._options.items():
            parser.add_argument(*option.switches(name), **option.resolve(name))

    @abstractmethod
    def configure(self, parser, /):
        """
        Compile this node into `parser` (an argparse.ArgumentParser).
        """


class Command(Node):
    """
    Leaf node: a handler plus its options and positional params.

    The handler is called with the parsed argparse.Namespace. The matched node
    and its parser are available on it as __node__ and __parser__.
    """
    __introspectable__ = Node.__introspectable__ + (
        "handler",
        "params",
    )

    __displayable__ = (
        "name",
        "descr",
        "options",
        "params",
    )

    def __init__(
            self,
            name,
            handler,
            /,
            *,
            descr=Unset,
            version=Unset,
            epilog=Unset,
            options=Unset,
            option_groups=Unset,
            params=Unset,
            plugins=(),
    ):
        if not callable(handler):
            raise TypeError(f"{type(self).__typename__} 'handler' must be callable")
        self._handler = handler
        self._params = {}
        super().__init__(
            name,
            descr=coalesce(descr, inspect.getdoc(handler) or Unset),
            version=version,
            epilog=epilog,
            options=options,
            option_groups=option_groups,
            plugins=plugins,
        )
        for name, param in dict(coalesce(params, {})).items():
            self.add_param(name, param)

    def _names(self):
        return super()._names() | set(self._params)

    def add_param(self, name, param=Unset, /, **metadata):
        """
        Declare a positional param; params keep their declaration order.

        Raises
        - DuplicateNameError: the name is already declared on this command.

        Returns
        - the stored Param.
        """
        param = _resolve_spec(self, Param, name, param, metadata)
        if name in self._names():
            raise DuplicateNameError(f"{type(self).__typename__} param name {name!r} is already in use")
        self._params[name] = param
        return param

    def configure(self, parser, /):
        self.run_plugins("on_before_configure", {"node": self, "parser": parser})

        self._configure_options(parser)
        for name, param in self._params.items():
            parser.add_argument(*param.switches(name), **param.resolve(name))

        parser.set_defaults(__handler__=self._handler, __node__=self, __parser__=parser)
        return parser


class Category(Node):
    """
    Branch node grouping subcommands.

    Children are compiled, and listed in help, in declaration order. The
    category's own options are registered on its parser before the subcommands.
    """
    __introspectable__ = Node.__introspectable__ + (
        "children",
    )

    __displayable__ = (
        "name",
        "descr",
        "children",
    )

    def __init__(
            self,
            name,
            /,
            *,
            descr=Unset,
            version=Unset,
            epilog=Unset,
            options=Unset,
            option_groups=Unset,
            plugins=(),
            children=(),
    ):
        super().__init__(
            name,
            descr=descr,
            version=version,
            epilog=epilog,
            options=options,
            option_groups=option_groups,
            plugins=plugins,
        )
        self._children = []
        self._prepared = Unset
        for child in children:
            self.add_child(child)

    @property
    def dest(self):
        """
        Namespace attribute holding the name of the matched child.
        """
        return self.name + "_command"

    def add_child(self, node, /):
        """
        Attach `node` as the last child of this category.

        Raises
        - TypeError: `node` is not a Node.
        - AttachmentError: `node` already has a parent, or is this category or
          one of its ancestors.
        - DuplicateNameError: a sibling already uses the same name, or a category
          in `node` shares its name with this category or one of its ancestors
          (both would store the matched subcommand under the same dest).
        """
        if not isinstance(node, Node):
            raise TypeError(f"{type(self).__typename__} child must be a node")
        if node._parent is not None:
            raise AttachmentError(f"{type(node).__typename__} {node.name!r} is already attached to a parent")
        if any(node is ancestor for ancestor in self.path):
            raise AttachmentError(f"{type(self).__typename__} {self.name!r} cannot contain itself or its ancestors")
        if any(child.name == node.name for child in self._children):
            raise DuplicateNameError(f"{type(self).__typename__} child name {node.name!r} is already in use")
        if clashes := {category.dest for category in _categories(node)} & {category.dest for category in self.path}:
            raise DuplicateNameError(f"{type(self).__typename__} subcommand dest {min(clashes)!r} is already in use by an ancestor")
        node.set_parent(self)
        self._children.append(node)
        return node

    def command(self, source=Unset, handler=Unset, /, **metadata):
        """
        Create a Command (see command()) and attach it here.

        Works directly (`cat.command("name", handler)`) and as a decorator
        (`@cat.command`, `@cat.command("name", descr=...)`).
        """
        made = command(source, handler, **metadata)
        if isinstance(made, Command):
            return self.add_child(made)

        @rename("command")
        def wrapper(handler, /):
            return self.add_child(made(handler))

        return wrapper

    def category(self, name, /, **metadata):
        """
        Create a Category and attach it here.
        """
        return self.add_child(Category(name, **metadata))

    def _prepare(self, parser):
        # on_before_configure runs once per instance; its outcome (including a
        # failure) is replayed on later configure() calls
        if self._prepared is Unset:
            try:
                self.run_plugins("on_before_configure", {"node": self, "parser": parser})
            except Exception as exception:
                self._prepared = exception
                raise
            self._prepared = True
        elif isinstance(self._prepared, Exception):
            raise self._prepared

    def configure(self, parser, /):
        self._prepare(parser)
        self._configure_options(parser)

        subparsers = parser.add_subparsers(dest=self.dest, title="subcommands", required=bool(self._children))
        for child in self._children:
            subparser = subparsers.add_parser(
                child.name,
                help=child.descr,
                description=child.descr,
                epilog=child.epilog,
                formatter_class=parser.formatter_class,
            )
            child.configure(subparser)
        return subparsers


def _categories(node):
    """
    Yield `node` and every category below it, when they are categories.
    """
    if isinstance(node, Category):
        yield node
        for child in node._children:
            yield from _categories(child)


def _default_name():
    name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    name = os.path.splitext(name)[0]
    return name if _NAME.fullmatch(name) else "app"


class App(Category):
    """
    Root of a command tree.

    Besides the category behavior it carries
    - version: adds a --version switch to the root parser.
    - bugtracker: where unexpected failures should be reported.
    - timeout: maximum handler duration in seconds (run(timeout=...) overrides it).
    """
    __introspectable__ = Category.__introspectable__ + (
        "bugtracker",
        "timeout",
    )

    def __init__(
            self,
            name=Unset,
            /,
            *,
            descr=Unset,
            version=Unset,
            epilog=Unset,
            bugtracker=Unset,
            timeout=Unset,
            options=Unset,
            option_groups=Unset,
            plugins=(),
            children=(),
    ):
        metadata = {"name": "app", "bugtracker": bugtracker}
        _sanitize_metadata(type(self), metadata)
        self._bugtracker = metadata["bugtracker"]

        if timeout is not Unset:
            if isinstance(timeout, bool) or not isinstance(timeout, int | float):
                raise TypeError(f"{type(self).__typename__} 'timeout' must be a number of seconds")
            elif timeout <= 0:
                raise ValueError(f"{type(self).__typename__} 'timeout' must be positive")
        self._timeout = timeout

        super().__init__(
            coalesce(name, _default_name()),
            descr=descr,
            version=version,
            epilog=epilog,
            options=options,
            option_groups=option_groups,
            plugins=plugins,
            children=children,
        )


def app(name=Unset, /, **metadata):
    """
    Create an App (the root of a command tree).
    """
    return App(name, **metadata)


def category(name, /, **metadata):
    """
    Create a detached Category; attach it with Category.add_child().
    """
    return Category(name, **metadata)


def command(source=Unset, handler=Unset, /, **metadata):
    """
    Create a Command or return a decorator building one.

    Invocation modes
    - command("name", handler, ...) -> Command
    - command(handler, ...)         -> Command named after handler.__name__
    - @command / @command("name", ...) / @command(descr=...) -> decorator

    The description defaults to the handler's docstring.
    """
    if callable(source):
        if handler is not Unset:
            raise TypeError("command() takes a name before the handler")
        return Command(source.__name__, source, **metadata)
    if handler is not Unset:
        return Command(source, handler, **metadata)

    @rename("command")
    def wrapper(handler, /):
        if not callable(handler):
            raise TypeError("@command() must be applied to a callable")
        return Command(coalesce(source, getattr(handler, "__name__", Unset)), handler, **metadata)

    return wrapper


__all__ = (
    "Node",
    "Command",
    "Category",
    "App",
    "app",
    "category",
    "command",
)
