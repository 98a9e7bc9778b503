"""
Sprout command tree.

Scope
- Command: an immutable-after-build node of the command tree. It carries a name,
  a description, aliases, the positional/named argument schema, per-node
  middleware, ordered children and an optional handler.
- command(): function and decorator form of Command; Command.command() builds
  and attaches children while the tree is being assembled.

Shape
- handler(context) -> object
  Receives the per-run Context (see sprout.context); its return value is ignored.
- middleware(context, next) -> object
  Calls next() to run the inner layers; skipping next() short-circuits them.

Rules enforced on construction
- Names and aliases match [a-z0-9][a-z0-9-]* and are unique among siblings.
- Cardinal names and Flag names are identifiers with dashes; flag aliases are unique.
- A list-typed Cardinal (variadic) must be the last one declared.
- The tree below a node is at most MAX_DEPTH levels deep and never contains the
  node itself.

A node with neither handler nor children is legal here; the runtime and the
discovery engine report it as an EmptyCommandWarning.
"""
import functools
import inspect
import operator
import re
from collections.abc import Iterable, Mapping

from rich.text import Text

from .arguments import Cardinal, Flag
from .utils import *

MAX_DEPTH = 20


class CommandType(type):
    """
    Metaclass providing __typename__, mirrored read-only properties (from
    __introspectable__) and stable __repr__/__rich_repr__ for Command.

    __displayable__ (if set) narrows which properties are shown by __rich_repr__.
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
            """
            Return a concise, stable representation with key metadata.

            Example
            - command(name='deploy', aliases=('d',), ...)
            """
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


def _process_source(cls, metadata):
    """
    Resolve name and description from the handler when they are not given.

    - name: handler.__name__ with surrounding underscores stripped and inner
      underscores turned into dashes (def dry_run -> "dry-run").
    - descr: the handler docstring (cleaned), if any.
    """
    if (handler := metadata["handler"]) is Unset:
        if metadata["name"] is Unset:
            raise TypeError(f"{cls.__typename__} without a handler must specify a 'name'")
        return
    if not callable(handler):
        raise TypeError(f"{cls.__typename__} handler must be callable")

    if metadata["name"] is Unset:
        try:
            metadata["name"] = handler.__name__.strip("_").replace("_", "-").lower()
        except AttributeError:
            raise TypeError(f"{cls.__typename__} cannot infer a 'name' from {handler!r}") from None
    if metadata["descr"] is Unset and (doc := inspect.getdoc(handler)):
        metadata["descr"] = doc


def _process_strings(cls, metadata):
    """
    Validate name, aliases and descr.

    - name: str matching [a-z0-9][a-z0-9-]*.
    - aliases: iterable of such names, without duplicates and distinct from name.
    - descr: str | Text | Unset, trimmed, non-empty when given; Unset -> None.
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} 'name' must be a string")
    elif not re.fullmatch(r"[a-z0-9][a-z0-9-]*", name := name.strip()):
        raise ValueError(f"{cls.__typename__} name {name!r} must be lowercase letters, digits and dashes")
    metadata["name"] = name

    if isinstance(aliases := metadata["aliases"], str) or not isinstance(aliases, Iterable):
        raise TypeError(f"{cls.__typename__} 'aliases' must be an iterable of strings")
    seen = [name]
    for alias in aliases:
        if not isinstance(alias, str):
            raise TypeError(f"{cls.__typename__} 'aliases' must be an iterable of strings")
        elif not re.fullmatch(r"[a-z0-9][a-z0-9-]*", alias := alias.strip()):
            raise ValueError(f"{cls.__typename__} alias {alias!r} must be lowercase letters, digits and dashes")
        elif alias in seen:
            raise ValueError(f"{cls.__typename__} {name!r} cannot repeat alias {alias!r}")
        seen.append(alias)
    metadata["aliases"] = tuple(seen[1:])

    if not isinstance(descr := metadata["descr"], str | Text | Unset):
        raise TypeError(f"{cls.__typename__} 'descr' must be a string")
    elif isinstance(descr, str) and not (descr := descr.strip()):
        raise ValueError(f"{cls.__typename__} 'descr' cannot be empty")
    metadata["descr"] = coalesce(descr)


def _process_schema(cls, metadata):
    """
    Validate the argument schema.

    - cardinals: Mapping[str, Cardinal]; a list-typed cardinal must come last.
    - flags: Mapping[str, Flag]; names cannot start with "no-" (reserved for
      negation) and aliases are unique across the command.
    """
    for key, kind in (("cardinals", Cardinal), ("flags", Flag)):
        if not isinstance(schema := metadata[key], Mapping):
            raise TypeError(f"{cls.__typename__} {key!r} must be a mapping")
        for name, argument in schema.items():
            if not isinstance(name, str) or not re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9_-]*", name):
                raise ValueError(f"{cls.__typename__} {key!r} contain an invalid name {name!r}")
            if not isinstance(argument, kind):
                raise TypeError(f"{cls.__typename__} {key!r} values must be {kind.__typename__} specs")
        metadata[key] = dict(schema)

    for position, (name, cardinal) in enumerate(metadata["cardinals"].items(), 1):
        if cardinal.multiple and position != len(metadata["cardinals"]):
            raise ValueError(f"{cls.__typename__} {ordinal(position)} cardinal {name!r} is variadic and must be the last one")

    aliases = {}
    for name, flag in metadata["flags"].items():
        if name.startswith("no-"):
            raise ValueError(f"{cls.__typename__} flag {name!r} cannot start with 'no-'")
        if flag.alias is None:
            continue
        if (other := aliases.setdefault(flag.alias, name)) != name:
            raise ValueError(f"{cls.__typename__} flags {other!r} and {name!r} share alias '-{flag.alias}'")


def _process_iterables(cls, metadata):
    """
    Stabilize middleware and children into tuples.
    """
    if not isinstance(middleware := metadata["middleware"], Iterable):
        raise TypeError(f"{cls.__typename__} 'middleware' must be an iterable of callables")
    if not all(map(callable, middleware := tuple(middleware))):
        raise TypeError(f"{cls.__typename__} 'middleware' must be an iterable of callables")
    metadata["middleware"] = middleware

    if not isinstance(children := metadata["children"], Iterable):
        raise TypeError(f"{cls.__typename__} 'children' must be an iterable of commands")
    children = list(children)
    if not all(isinstance(child, Command) for child in children):
        raise TypeError(f"{cls.__typename__} 'children' must be an iterable of commands")
    metadata["children"] = []
    for child in children:
        _attach(cls, metadata["children"], child)


def _attach(cls, siblings, command, /):
    """
    Append command to siblings, enforcing unique names and aliases at one level.
    """
    taken = {token for sibling in siblings for token in (sibling.name, *sibling.aliases)}
    for token in (command.name, *command.aliases):
        if token in taken:
            raise ValueError(f"{cls.__typename__} name {token!r} is already in use at this level")
    siblings.append(command)


def _measure(command, /, depth=1, lineage=()):
    """
    Walk the tree below command, rejecting cycles and trees deeper than MAX_DEPTH.
    """
    if any(command is ancestor for ancestor in lineage):
        raise ValueError(f"command {command.name!r} cannot contain itself")
    if depth > MAX_DEPTH:
        raise ValueError(f"command tree cannot be deeper than {MAX_DEPTH} levels")
    for child in command._children:
        _measure(child, depth + 1, (*lineage, command))


class Command(metaclass=CommandType):
    """
    A routable node of the command tree.

    Construction
    - Command(handler) infers name and description from the callable.
    - Command(name="db", children=(...)) builds a pure grouping node.
    - Children can be added with .command() until the tree is handed to a runtime;
      from then on the tree is treated as read-only.

    Properties (read-only)
    - name, descr, aliases, cardinals, flags, children, middleware, handler, hidden.
    """

    __introspectable__ = (
        "name",
        "descr",
        "aliases",
        "cardinals",
        "flags",
        "children",
        "middleware",
        "handler",
        "hidden",
    )

    __displayable__ = (
        "name",
        "descr",
        "aliases",
        "children",
        "hidden",
    )

    def __new__(
            cls,
            source=Unset,
            /,
            name=Unset,
            descr=Unset,
            aliases=(),
            cardinals={},
            flags={},
            children=(),
            middleware=(),
            *,
            hidden=False
    ):
        """
        Build a command node.

        Parameters
        - source: Unset | Callable
          Handler called with the per-run context. Optional for grouping nodes.
        - name: Unset | str
          Defaults to the handler name (underscores become dashes).
        - descr: Unset | str | Text
          Defaults to the handler docstring.
        - aliases: Iterable[str]
        - cardinals: Mapping[str, Cardinal] (declaration order is binding order)
        - flags: Mapping[str, Flag]
        - children: Iterable[Command]
        - middleware: Iterable[Callable[[context, next], object]]
        - hidden: bool
          Hidden commands are left out of suggestions but still routable.

        Raises
        - TypeError / ValueError on malformed metadata, sibling name clashes,
          cycles or trees deeper than MAX_DEPTH.
        """
        metadata = {
            "handler": source,
            "name": name,
            "descr": descr,
            "aliases": aliases,
            "cardinals": cardinals,
            "flags": flags,
            "children": children,
            "middleware": middleware,
            "hidden": bool(hidden),
        }
        _process_source(cls, metadata)
        _process_strings(cls, metadata)
        _process_schema(cls, metadata)
        _process_iterables(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, coalesce(object))
        _measure(self)
        return self

    def command(self, source=Unset, /, **options):
        """
        Attach a child command.

        Forms
        - parent.command(Command(...)) -> the attached child
        - parent.command(handler, **options) -> a new child built from handler
        - @parent.command(**options) -> decorator form
        """
        if source is Unset:
            return rename(lambda source, /: self.command(source, **options), "command")

        child = source if isinstance(source, Command) and not options else Command(source, **options)
        _attach(type(self), self._children, child)
        try:
            _measure(self)
        except ValueError:
            self._children.remove(child)
            raise
        return child

    def lookup(self, token, /):
        """
        Return the direct child named token (by name or alias), or None.
        """
        for child in self._children:
            if token == child.name or token in child.aliases:
                return child
        return None

    def walk(self):
        """
        Yield (path, command) for this node and every descendant, depth-first;
        path is the tuple of names from this node down.
        """
        stack = [((self.name,), self)]
        while stack:
            path, command = stack.pop()
            yield path, command
            stack.extend(((*path, child.name), child) for child in reversed(command._children))


def command(source=Unset, /, **options):
    """
    Build a Command from a handler, or return a decorator that will.

    Examples
    - command(deploy, aliases=("d",))
    - @command(flags={"force": Flag()})
      def deploy(context): ...
    """
    if source is not Unset:
        return Command(source, **options)

    @rename("command")
    def wrapper(source, /):
        return Command(source, **options)

    return wrapper


__all__ = (
    # Classes
    "Command",

    # Functions
    "command",

    # Constants
    "MAX_DEPTH",
)
