"""
Sprout router.

route(tokens, tree) resolves the leading tokens of an invocation to a node of
the command tree.

Behavior
- An empty token vector matches nothing and suggests nothing.
- The first token is matched exactly against names and aliases of the current
  level.
- On a match with children, when tokens remain and the next one is not
  flag-shaped, the lookup continues one level down:
  • a nested match is returned as is;
  • a nested miss that has suggestions is returned with the matched name
    prepended to Route.path;
  • a nested miss without suggestions makes the current node the match, the
    remaining tokens becoming its own arguments.
- On a miss, every visible candidate is scored with the minimum edit distance
  over its name and aliases (lowercased). An input that is a case-insensitive
  prefix of a name or alias scores 0. Candidates scoring at most 3 are returned,
  sorted by score, ties kept in declaration order.
- Hidden nodes never show up in suggestions but match exactly.
"""
import operator

from .commands import MAX_DEPTH, Command
from .parser import distance
from .utils import *

CUTOFF = 3


class Suggestion:
    """
    A near-miss candidate: name, descr (or None) and distance.
    """
    __slots__ = ("_name", "_descr", "_distance")

    name = mirror("name")
    descr = mirror("descr")
    distance = mirror("distance")

    def __init__(self, name, descr, distance, /):
        self._name = name
        self._descr = descr
        self._distance = distance

    def __repr__(self):
        return f"suggestion(name={self._name!r}, descr={self._descr!r}, distance={self._distance!r})"

    def __eq__(self, other):
        if not isinstance(other, Suggestion):
            return NotImplemented
        return (self._name, self._descr, self._distance) == (other._name, other._descr, other._distance)

    def __hash__(self):
        return hash((self._name, self._distance))


class Route:
    """
    Outcome of route().

    - command: the matched Command, or None.
    - tokens: tuple of tokens left after the matched path (the whole input on a
      top-level miss, the unmatched tail on a nested miss).
    - suggestions: tuple of Suggestion, closest first.
    - path: names of the ancestors matched before a nested lookup failed.
    """
    __slots__ = ("_command", "_tokens", "_suggestions", "_path")

    command = mirror("command")
    tokens = mirror("tokens")
    suggestions = mirror("suggestions")
    path = mirror("path")

    def __init__(self, command=None, tokens=(), suggestions=(), path=(), /):
        self._command = command
        self._tokens = tuple(tokens)
        self._suggestions = tuple(suggestions)
        self._path = tuple(path)

    @property
    def found(self):
        return self._command is not None

    def __repr__(self):
        return (
            f"route(command={getattr(self._command, "name", None)!r}, tokens={self._tokens!r}, "
            f"suggestions={self._suggestions!r}, path={self._path!r})"
        )


def _score(word, command, /):
    word = word.lower()
    return min(
        0 if label.lower().startswith(word) else distance(word, label.lower())
        for label in (command.name, *command.aliases)
    )


def suggest(token, commands, /):
    """
    Rank the visible commands close to token (see module docstring).
    """
    ranked = []
    for command in commands:
        if command.hidden:
            continue
        if (score := _score(token, command)) <= CUTOFF:
            ranked.append(Suggestion(command.name, command.descr, score))
    return tuple(sorted(ranked, key=operator.attrgetter("distance")))


def _route(tokens, commands, depth, /):
    if depth > MAX_DEPTH:
        raise RecursionError(f"command tree is deeper than {MAX_DEPTH} levels")
    if not tokens:
        return Route()

    token, remaining = tokens[0], tokens[1:]
    for command in commands:
        if token == command.name or token in command.aliases:
            break
    else:
        return Route(None, tokens, suggest(token, commands))

    if command.children and remaining and not remaining[0].startswith("-"):
        nested = _route(remaining, command.children, depth + 1)
        if nested.command is not None:
            return nested
        if nested.suggestions:
            return Route(None, nested.tokens, nested.suggestions, (command.name, *nested.path))

    return Route(command, remaining)


def route(tokens, tree, /):
    """
    Resolve tokens against tree.

    Parameters
    - tokens: Iterable[str]
    - tree: Iterable[Command] (the top level), or a Command whose children form
      the top level.

    Returns
    - Route
    """
    commands = tree.children if isinstance(tree, Command) else tuple(tree)
    return _route(tuple(map(str, tokens)), commands, 1)


__all__ = (
    "Route",
    "Suggestion",
    "route",
    "suggest",
)
