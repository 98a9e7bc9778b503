"""
Sprout extensions and dependency ordering.

Scope
- Extension: a named unit that registers capabilities on the per-run Context
  during setup(context), and optionally releases them in teardown(context).
- extension(): function and decorator form of Extension.
- toposort(): order extensions so that every dependency comes strictly before
  its dependents.

Ordering
- Kahn's worklist. The worklist is a heap keyed by input position, so among the
  extensions that are ready the earliest declared one goes first; an input that
  already satisfies its dependencies comes back unchanged.
- Dependencies naming an extension outside the given set are ignored (they may
  be satisfied by the host).
- Duplicate names raise ExtensionConflictError; a cycle raises
  DependencyCycleError naming every extension that could not be ordered. No
  partial order is ever returned.
"""
import heapq
import inspect
import logging
import re
from collections import defaultdict
from collections.abc import Iterable

from rich.text import Text

from .faults import *
from .utils import *

logger = logging.getLogger(__name__)


class Extension:
    """
    A named setup/teardown pair with dependency names.

    Parameters
    - setup: Callable[[context], object]
    - name: Unset | str, defaults to setup.__name__ (underscores become dashes)
    - descr: Unset | str | Text, defaults to the setup docstring
    - dependencies: Iterable[str], names of extensions that must be set up first
    - teardown: Unset | Callable[[context], object]

    Properties (read-only): name, descr, dependencies, setup, teardown.
    """

    name = mirror("name")
    descr = mirror("descr")
    dependencies = mirror("dependencies")
    setup = mirror("setup")
    teardown = mirror("teardown")

    def __init__(self, setup, /, name=Unset, descr=Unset, dependencies=(), teardown=Unset):
        if not callable(setup):
            raise TypeError("extension 'setup' must be callable")
        if not (teardown is Unset or callable(teardown)):
            raise TypeError("extension 'teardown' must be callable")

        if name is Unset:
            name = getattr(setup, "__name__", "").strip("_").replace("_", "-").lower()
        if not isinstance(name, str):
            raise TypeError("extension 'name' must be a string")
        elif not re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9_.-]*", name := name.strip()):
            raise ValueError(f"extension name {name!r} must be letters, digits, dots, dashes or underscores")

        if descr is Unset and (doc := inspect.getdoc(setup)):
            descr = doc
        if not isinstance(descr, str | Text | Unset):
            raise TypeError("extension 'descr' must be a string")
        elif isinstance(descr, str) and not (descr := descr.strip()):
            raise ValueError("extension 'descr' cannot be empty")

        if isinstance(dependencies, str) or not isinstance(dependencies, Iterable):
            raise TypeError("extension 'dependencies' must be an iterable of strings")
        sanitized = []
        for dependency in dependencies:
            if not isinstance(dependency, str) or not dependency.strip():
                raise TypeError("extension 'dependencies' must be an iterable of non-empty strings")
            elif (dependency := dependency.strip()) in sanitized:
                raise ValueError(f"extension {name!r} cannot repeat dependency {dependency!r}")
            sanitized.append(dependency)

        self._name = name
        self._descr = coalesce(descr)
        self._dependencies = tuple(sanitized)
        self._setup = setup
        self._teardown = coalesce(teardown)

    def finalizer(self, callback, /):
        """
        Bind callback as the teardown (decorator friendly). Only once.
        """
        if not callable(callback):
            raise TypeError("@extension.finalizer must be applied to a callable")
        if self._teardown is not None:
            raise ValueError(f"extension {self._name!r} already has a teardown")
        self._teardown = callback
        return callback

    def __repr__(self):
        return f"extension(name={self._name!r}, dependencies={self._dependencies!r})"

    def __rich_repr__(self):
        yield "name", self._name
        yield "descr", self._descr
        yield "dependencies", self._dependencies


def extension(setup=Unset, /, **options):
    """
    Build an Extension from a setup callable, or return a decorator that will.

    Example
    - @extension(dependencies=("config",))
      def database(context): ...
    """
    if setup is not Unset:
        return Extension(setup, **options)

    @rename("extension")
    def wrapper(setup, /):
        return Extension(setup, **options)

    return wrapper


def toposort(extensions, /):
    """
    Return a list of extensions with every dependency before its dependents.

    Raises
    - ExtensionConflictError: two extensions share a name.
    - DependencyCycleError: some extensions depend on each other in a cycle;
      .extensions names all of them (input order).
    """
    extensions = tuple(extensions)

    positions = {}
    for position, object in enumerate(extensions):
        if not isinstance(object, Extension):
            raise TypeError(f"toposort() expects extensions, got {object!r}")
        if positions.setdefault(object.name, position) != position:
            raise ExtensionConflictError(
                f"extension {object.name!r} is declared more than once",
                extension=object.name,
                hint="extension names must be unique, rename one of them",
            )

    pending = [0] * len(extensions)
    dependents = defaultdict(list)
    for position, object in enumerate(extensions):
        for dependency in object.dependencies:
            if dependency not in positions:
                logger.debug("extension %s depends on %s, which is not part of the set", object.name, dependency)
                continue
            pending[position] += 1
            dependents[positions[dependency]].append(position)

    worklist = [position for position, count in enumerate(pending) if not count]
    heapq.heapify(worklist)
    ordered = []
    while worklist:
        ordered.append(position := heapq.heappop(worklist))
        for dependent in dependents[position]:
            pending[dependent] -= 1
            if not pending[dependent]:
                heapq.heappush(worklist, dependent)

    if len(ordered) != len(extensions):
        remaining = tuple(object.name for position, object in enumerate(extensions) if pending[position])
        raise DependencyCycleError(
            f"extensions {", ".join(map(repr, remaining))} depend on each other in a cycle",
            extensions=remaining,
            hint="remove one of the dependencies to break the cycle",
        )

    logger.debug("extension order: %s", ", ".join(extensions[position].name for position in ordered))
    return [extensions[position] for position in ordered]


__all__ = (
    "Extension",
    "extension",
    "toposort",
)
