"""
Sprout execution context.

Context is the per-run capability registry shared by the host modules, the
extensions and the command handler. It is built fresh for every run and
discarded after teardown.

Registry rules
- Keys are strings or types.
- register(key, implementation) is additive: a key can be registered once per
  run; a type key only accepts an instance of that type.
- require(key) returns the implementation or raises CapabilityError (also a
  KeyError); get(key, default) never raises.
- String keys are stripped of surrounding whitespace on registration and on
  every lookup, and are readable as attributes (context.database).

Per-run fields
- brand, command, tokens, arguments, flags, residual. The runtime fills them in
  once routing and parsing are done; they are plain attributes.
"""
from types import MappingProxyType

from .faults import *


class Context:
    """
    Per-run capability registry.

    Parameters
    - modules: Mapping of host modules registered up front (keys as above).
    - fields: initial per-run fields (brand, command, tokens, ...).
    """

    def __init__(self, modules=None, /, **fields):
        self._capabilities = {}
        self.brand = None
        self.command = None
        self.tokens = ()
        self.arguments = {}
        self.flags = {}
        self.residual = ()
        for name, value in fields.items():
            setattr(self, name, value)
        for key, implementation in (modules or {}).items():
            self.register(key, implementation)

    @property
    def capabilities(self):
        """Read-only view of every registered capability."""
        return MappingProxyType(self._capabilities)

    def register(self, key, implementation, /):
        """
        Add a capability. Returns implementation (decorator friendly).

        Raises
        - TypeError: key is neither a string nor a type, or a type key
          gets an implementation that is not an instance of it.
        - ValueError: key is empty or already registered.
        """
        if isinstance(key, str):
            if not (key := key.strip()):
                raise ValueError("context key cannot be empty")
        elif isinstance(key, type):
            if not isinstance(implementation, key):
                raise TypeError(f"context capability {key.__name__!r} must be an instance of {key.__name__}")
        else:
            raise TypeError("context key must be a string or a type")

        if key in self._capabilities:
            raise ValueError(f"context capability {_label(key)!r} is already registered")
        self._capabilities[key] = implementation
        return implementation

    def require(self, key, /):
        """
        Return the capability registered under key.

        Raises
        - CapabilityError (a KeyError) when nothing is registered under key.
        """
        try:
            return self._capabilities[_normalize(key)]
        except (KeyError, TypeError):
            raise CapabilityError(
                f"capability {_label(key)!r} is not available",
                key=key,
                hint="register it from an extension setup or pass it as a module",
            ) from None

    def get(self, key, default=None, /):
        try:
            return self._capabilities[_normalize(key)]
        except (KeyError, TypeError):
            return default

    def __contains__(self, key):
        try:
            return _normalize(key) in self._capabilities
        except TypeError:
            return False

    def __iter__(self):
        return iter(tuple(self._capabilities))

    def __getattr__(self, name):
        # only called when regular lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._capabilities[name]
        except KeyError:
            raise AttributeError(f"context has no capability or field {name!r}") from None

    def __repr__(self):
        return f"context(command={getattr(self.command, "name", None)!r}, capabilities={tuple(map(_label, self._capabilities))!r})"


def _normalize(key):
    return key.strip() if isinstance(key, str) else key


def _label(key):
    return key.__name__ if isinstance(key, type) else str(key)


__all__ = (
    "Context",
)
