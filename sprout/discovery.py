"""
Sprout discovery engine.

discover(root) builds commands and extensions from a directory convention:

    root/
      commands/          one unit per .py file, directories nest subcommands
        deploy.py        -> deploy
        db/
          index.py       -> configures "db" itself (description, handler, ...)
          migrate.py     -> db migrate
          seed.py        -> db seed
      extensions/        flat, one extension per .py file
        database.py

Selection
- Every path segment starting with "_" or "." is skipped (this covers
  __init__.py and __pycache__), as are test_*.py, *_test.py and conftest.py.
  Stub files (.pyi) and anything that is not .py are never picked up.

Units
- A unit is loaded through an injectable loader(path) -> value (default: load()).
- A value can be a ready Command / Extension, a mapping of unit keys, or any
  object (a module) exposing them as attributes.
  • command keys: name, description, alias, hidden, args, flags, children,
    middleware, handler ("aliases" and "arguments" are read as alternate
    spellings of "alias" and "args"; declaring both spellings is an error)
  • extension keys: name, description, dependencies, setup, teardown
  Argument and flag specs may be given as Cardinal/Flag objects or as mappings
  of their constructor options ("type", "required", "choices", "default",
  "validate", "description", "alias", "hidden").

Tree construction
- Loads run concurrently on a thread pool; results are merged in lexicographic
  path order, never in completion order.
- The tree is an arena keyed by path tuple: ancestors are created on demand as
  bare placeholders and every unit configures exactly one node, so an index unit
  merges the same way whether it arrives before or after its siblings.
- commands/<dir>/index.py and commands/<dir>.py both configure <dir>; children
  declared by the unit come first, discovered children follow in path order.
- commands/index.py has no node above it and is ignored.

Failures
- A unit that fails to load, exposes neither handler nor children, lacks an
  extension setup, or clashes with a sibling becomes a DiscoveryError
  diagnostic (path + cause). A unit calling sys.exit() while loading counts
  as a load failure. Diagnostics are logged; the scan goes on.
"""
import hashlib
import importlib.util
import logging
import sys
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .arguments import Cardinal, Flag
from .commands import Command
from .extensions import Extension
from .faults import *
from .utils import *

logger = logging.getLogger(__name__)

COMMAND_KEYS = (
    "name",
    "description",
    "alias",
    "aliases",
    "hidden",
    "args",
    "arguments",
    "flags",
    "children",
    "middleware",
    "handler",
)

EXTENSION_KEYS = (
    "name",
    "description",
    "dependencies",
    "setup",
    "teardown",
)


class Discovery:
    """
    Outcome of discover(): commands (top-level, path order), extensions (path
    order) and diagnostics (DiscoveryError, path order).
    """
    __slots__ = ("_commands", "_extensions", "_diagnostics")

    commands = mirror("commands")
    extensions = mirror("extensions")
    diagnostics = mirror("diagnostics")

    def __init__(self, commands=(), extensions=(), diagnostics=(), /):
        self._commands = tuple(commands)
        self._extensions = tuple(extensions)
        self._diagnostics = tuple(diagnostics)

    def __repr__(self):
        return (
            f"discovery(commands={tuple(command.name for command in self._commands)!r}, "
            f"extensions={tuple(extension.name for extension in self._extensions)!r}, "
            f"diagnostics={len(self._diagnostics)})"
        )


def load(path, /):
    """
    Import the Python file at path under a private module name.

    Returns the module's `default` attribute when it has one, else the module.
    Import errors propagate to the caller.
    """
    path = Path(path).resolve()
    name = "_sprout_unit_" + hashlib.sha1(str(path).encode()).hexdigest()[:16]
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot import {str(path)!r}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(name, None)
        raise
    return getattr(module, "default", module)


def _scan(directory, /, recursive):
    """
    Return the unit files under directory, sorted by relative POSIX path.
    """
    if not directory.is_dir():
        return []
    units = []
    for path in directory.rglob("*.py") if recursive else directory.glob("*.py"):
        relative = path.relative_to(directory)
        if any(part.startswith(("_", ".")) for part in relative.parts):
            continue
        if path.name.startswith("test_") or path.name.endswith("_test.py") or path.name == "conftest.py":
            continue
        if path.is_file():
            units.append(path)
    return sorted(units, key=lambda path: path.relative_to(directory).as_posix())


def _gather(paths, loader, /, workers):
    """
    Load every path concurrently; return [(path, value, error)] in input order.
    """
    if not paths:
        return []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sprout-load-") as executor:
        futures = [executor.submit(loader, path) for path in paths]
        results = []
        for path, future in zip(paths, futures):
            try:
                results.append((path, future.result(), None))
            except (Exception, SystemExit) as error:
                results.append((path, None, error))
    return results


def _fields(value, keys, /):
    """
    Read the unit keys present on a mapping or an attribute namespace.
    """
    if isinstance(value, Mapping):
        return {key: value[key] for key in keys if key in value}
    return {key: getattr(value, key) for key in keys if hasattr(value, key)}


def _spec(kind, value, /):
    """
    Turn a Cardinal/Flag or a mapping of constructor options into a spec.
    """
    if isinstance(value, kind):
        return value
    if not isinstance(value, Mapping):
        raise TypeError(f"{kind.__typename__} spec must be a {kind.__typename__} or a mapping")
    options = dict(value)
    if "description" in options:
        options["descr"] = options.pop("description")
    if "type" in options:
        return kind(options.pop("type"), **options)
    return kind(**options)


def _either(fields, key, spelling, /):
    # one unit key under either of its two spellings
    if key in fields and spelling in fields:
        raise TypeError(f"command unit cannot declare both {key!r} and {spelling!r}")
    return fields.get(key, fields.get(spelling))


def _command_fields(value, /):
    """
    Normalize a loaded command value into Command keyword arguments plus the
    handler. Declared children may themselves be units.
    """
    if isinstance(value, Command):
        return {
            "name": value.name,
            "descr": Unset if value.descr is None else value.descr,
            "aliases": value.aliases,
            "hidden": value.hidden,
            "cardinals": value.cardinals,
            "flags": value.flags,
            "children": value.children,
            "middleware": value.middleware,
            "handler": Unset if value.handler is None else value.handler,
        }
    if isinstance(value, type):
        raise TypeError(f"expected a command unit, got {value!r}")
    if callable(value):
        value = {"handler": value}

    fields = _fields(value, COMMAND_KEYS)
    aliases = _either(fields, "alias", "aliases") or ()
    cardinals = _either(fields, "args", "arguments") or {}
    return {
        "name": fields.get("name", Unset),
        "descr": fields.get("description", Unset),
        "aliases": (aliases,) if isinstance(aliases, str) else tuple(aliases),
        "hidden": bool(fields.get("hidden", False)),
        "cardinals": {name: _spec(Cardinal, spec) for name, spec in dict(cardinals).items()},
        "flags": {name: _spec(Flag, spec) for name, spec in dict(fields.get("flags") or {}).items()},
        "children": tuple(map(_child, fields.get("children") or ())),
        "middleware": tuple(fields.get("middleware") or ()),
        "handler": fields.get("handler", Unset),
    }


def _child(value, /):
    # declared children are full units of their own
    if isinstance(value, Command):
        return value
    fields = _command_fields(value)
    return Command(fields.pop("handler"), **fields)


class _Node:
    """
    Arena entry: one command node addressed by its path tuple.
    """
    __slots__ = ("key", "path", "fields", "children", "configured")

    def __init__(self, key, path, /):
        self.key = key
        self.path = path
        self.fields = {}
        self.children = []
        self.configured = False


class _Arena:
    """
    Node table keyed by path tuple; ancestors are created idempotently.
    """

    def __init__(self, root, /):
        self.root = root
        self.nodes = {}
        self.top = []

    def node(self, key, /):
        if (node := self.nodes.get(key)) is not None:
            return node
        node = self.nodes[key] = _Node(key, self.root.joinpath(*key))
        if len(key) == 1:
            self.top.append(key)
        else:
            parent = self.node(key[:-1])
            parent.children.append(key)
        return node


def _report(diagnostics, path, cause, /, code=FaultCode.UNIT_LOAD_FAILED, message=Unset):
    error = DiscoveryError(
        coalesce(message, f"cannot load {str(path)!r}: {cause}"),
        path=str(path),
        cause=cause,
        code=code,
    )
    logger.warning("%s", error)
    diagnostics.append(error)


def _materialize(arena, key, diagnostics, /):
    """
    Build the Command for key (children first); None when the node is dropped.
    """
    node = arena.nodes[key]
    fields = dict(node.fields)
    handler = fields.pop("handler", Unset)
    declared = tuple(fields.pop("children", ()))

    children = []
    taken = set()
    for child in (*declared, *(_materialize(arena, nested, diagnostics) for nested in node.children)):
        if child is None:
            continue
        if taken & {child.name, *child.aliases}:
            _report(
                diagnostics,
                arena.nodes.get((*key, child.name), node).path,
                ValueError(f"name {child.name!r} is already in use"),
                code=FaultCode.NAME_CLASH,
                message=f"command {child.name!r} clashes with a sibling under {"/".join(key)!r}",
            )
            continue
        taken |= {child.name, *child.aliases}
        children.append(child)

    if handler is Unset and not children:
        _report(
            diagnostics,
            node.path,
            ValueError("no handler and no children"),
            code=FaultCode.MALFORMED_UNIT,
            message=f"{str(node.path)!r} exposes neither a handler nor children",
        )
        return None

    if fields.get("name", Unset) is Unset:
        fields["name"] = key[-1].replace("_", "-").lower()
    try:
        return Command(handler, children=children, **fields)
    except (TypeError, ValueError) as error:
        _report(diagnostics, node.path, error, code=FaultCode.MALFORMED_UNIT)
        return None


def _discover_commands(directory, loader, /, workers):
    arena = _Arena(directory)
    diagnostics = []

    for path, value, error in _gather(_scan(directory, recursive=True), loader, workers):
        if error is not None:
            _report(diagnostics, path, error)
            continue

        segments = path.relative_to(directory).with_suffix("").parts
        if segments[-1] == "index":
            if len(segments) == 1:
                logger.debug("ignoring top-level index unit %s", path)
                continue
            segments = segments[:-1]

        try:
            fields = _command_fields(value)
        except (TypeError, ValueError) as cause:
            _report(diagnostics, path, cause, code=FaultCode.MALFORMED_UNIT)
            continue

        node = arena.node(segments)
        if node.configured:
            _report(
                diagnostics,
                path,
                ValueError(f"{"/".join(segments)!r} is already configured by {str(node.path)!r}"),
                code=FaultCode.NAME_CLASH,
            )
            continue
        node.fields, node.path, node.configured = fields, path, True
        logger.debug("loaded command unit %s", path)

    commands = []
    taken = set()
    for key in arena.top:
        if (command := _materialize(arena, key, diagnostics)) is None:
            continue
        if taken & {command.name, *command.aliases}:
            _report(
                diagnostics,
                arena.nodes[key].path,
                ValueError(f"name {command.name!r} is already in use"),
                code=FaultCode.NAME_CLASH,
                message=f"command {command.name!r} clashes with another top-level command",
            )
            continue
        taken |= {command.name, *command.aliases}
        commands.append(command)

    return commands, diagnostics


def _extension(path, value, /):
    if isinstance(value, Extension):
        return value
    fields = _fields(value, EXTENSION_KEYS)
    if not callable(fields.get("setup")):
        raise TypeError("extension unit is missing a setup function")
    return Extension(
        fields["setup"],
        name=fields.get("name") or path.stem,
        descr=fields.get("description", Unset),
        dependencies=tuple(fields.get("dependencies") or ()),
        teardown=fields.get("teardown") or Unset,
    )


def _discover_extensions(directory, loader, /, workers):
    extensions = []
    diagnostics = []
    for path, value, error in _gather(_scan(directory, recursive=False), loader, workers):
        if error is not None:
            _report(diagnostics, path, error)
            continue
        try:
            extensions.append(_extension(path, value))
        except (TypeError, ValueError) as cause:
            _report(diagnostics, path, cause, code=FaultCode.MALFORMED_UNIT)
            continue
        logger.debug("loaded extension unit %s", path)
    return extensions, diagnostics


def discover(root, /, loader=load, *, workers=None):
    """
    Discover commands and extensions under root.

    Parameters
    - root: str | os.PathLike, the directory holding commands/ and extensions/.
    - loader: Callable[[Path], object], how a unit file becomes a value.
    - workers: max threads per scan (ThreadPoolExecutor default when None).

    Returns
    - Discovery(commands, extensions, diagnostics)

    The two scans run concurrently and are joined before returning. Missing
    directories simply yield nothing.
    """
    root = Path(root)
    if not callable(loader):
        raise TypeError("discover() 'loader' must be callable")

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sprout-scan-") as executor:
        commands = executor.submit(_discover_commands, root / "commands", loader, workers=workers)
        extensions = executor.submit(_discover_extensions, root / "extensions", loader, workers=workers)
        commands, command_diagnostics = commands.result()
        extensions, extension_diagnostics = extensions.result()

    logger.debug(
        "discovered %d command(s) and %d extension(s) under %s (%d diagnostic(s))",
        len(commands),
        len(extensions),
        root,
        len(command_diagnostics) + len(extension_diagnostics),
    )
    return Discovery(commands, extensions, (*command_diagnostics, *extension_diagnostics))


__all__ = (
    "Discovery",
    "discover",
    "load",
    "COMMAND_KEYS",
    "EXTENSION_KEYS",
)
