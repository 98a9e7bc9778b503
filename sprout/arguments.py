r"""
Sprout argument specifications.

Overview
- Specs
  • Cardinal: positional, value-bearing argument bound by declaration order.
  • Flag: named argument matched by long name (--name) or a single-character
    alias (-n); boolean flags are presence switches.

- Introspection & representation
  • ArgumentType metaclass provides stable __repr__/__rich_repr__ and exposes
    selected fields via read-only properties declared in __introspectable__.

Metadata (sanitized on construction)
- type: one of TYPES ("text", "number", "boolean", "text-list", "number-list").
  A Cardinal cannot be boolean; list types collect every occurrence.
- required: bool.
- choices: Iterable; duplicates rejected; numeric types coerce choices to numbers
  up front. Boolean flags cannot declare choices.
- default: any value; Unset means "no default" (None is a real default).
- validate: Unset | callable(value) -> True | None | False | str. A string is the
  failure reason; False is a failure without one.
- descr: Unset | str | Text (short help), non-empty when provided.
- alias (Flag only): a single ASCII letter or digit.
- hidden: bool.

Quick example:
    >>> from sprout.arguments import Cardinal, Flag
    >>> Cardinal("text", required=True, descr="service name")
    >>> Flag("number", "r", default=1, choices=(1, 2, 3))
    ...

Public API
- Classes: Cardinal, Flag
- Functions: number
- Constants: TYPES
"""
import functools
import math
import operator
import re
from collections.abc import Iterable

from rich.text import Text

from .utils import *

TYPES = ("text", "number", "boolean", "text-list", "number-list")


def number(raw, /):
    """
    Coerce a raw token (or an already numeric value) into an int or a float.

    - "3" -> 3, "2.5" -> 2.5, " 7 " -> 7
    - Non-numeric text, booleans, NaN and infinities are rejected with ValueError.
      No placeholder value is ever produced.
    """
    if isinstance(raw, bool):
        raise ValueError(f"{raw!r} is not a number")
    if isinstance(raw, int | float):
        value = raw
    else:
        text = str(raw).strip()
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                raise ValueError(f"{raw!r} is not a number") from None
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{raw!r} is not a finite number")
    return value


class ArgumentType(type):
    """
    Metaclass for argument specs.

    Responsibilities
    - Derive __typename__ from the class name (camel-case split with hyphens),
      used in every construction message.
    - Expose the names in __introspectable__ as read-only properties via mirror().
    - Provide stable __repr__/__rich_repr__ implementations for diagnostics.
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
            """
            Return a concise, stable representation with key metadata.

            Example
            - flag(type='number', alias='r', required=False, ...)
            """
            return f"{type(self).__typename__}({
                ", ".join(map(functools.partial(operator.mod, "%s=%r"), self.__rich_repr__()))
            })"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            """
            Yield (name, object) pairs for pretty printers.
            """
            for name in type(self).__introspectable__:
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: normalize and validate the metadata shared by Cardinal and Flag.

    Responsibilities
    - type: must be one of TYPES.
    - choices: iterable without duplicates, normalized to a tuple; numeric types
      get their choices coerced to numbers (non-numeric choice -> ValueError).
    - validate: Unset or a callable; Unset -> None.
    - descr: Unset | str | Text, trimmed, non-empty when provided; Unset -> None.

    Side effects
    - Mutates the provided metadata dict in place.
    """
    if not isinstance(type := metadata["type"], str):
        raise TypeError(f"{cls.__typename__} 'type' must be a string")
    elif type not in TYPES:
        raise ValueError(f"{cls.__typename__} 'type' must be one of {", ".join(map(repr, TYPES))}")

    if isinstance(choices := metadata["choices"], str) or not isinstance(choices, Iterable):
        raise TypeError(f"{cls.__typename__} 'choices' must be a non-string iterable")
    sanitized = []
    for choice in choices:
        if type.startswith("number"):
            try:
                choice = number(choice)
            except ValueError:
                raise ValueError(f"{cls.__typename__} numeric 'choices' must be numbers, got {choice!r}") from None
        elif type.startswith("text"):
            if not isinstance(choice, str):
                raise TypeError(f"{cls.__typename__} 'choices' must be strings")
        if choice in sanitized:
            raise ValueError(f"{cls.__typename__} 'choices' cannot contain duplicates")
        sanitized.append(choice)
    if sanitized and type == "boolean":
        raise TypeError(f"boolean {cls.__typename__} cannot have 'choices'")
    metadata["choices"] = tuple(sanitized)

    if not (metadata["validate"] is Unset or callable(metadata["validate"])):
        raise TypeError(f"{cls.__typename__} 'validate' must be callable")
    metadata["validate"] = coalesce(metadata["validate"])

    if not isinstance(descr := metadata["descr"], str | Text | Unset):
        raise TypeError(f"{cls.__typename__} 'descr' must be a string")
    elif isinstance(descr, str) and not (descr := descr.strip()):
        raise ValueError(f"{cls.__typename__} 'descr' cannot be empty")
    metadata["descr"] = coalesce(descr)


class _Argument(metaclass=ArgumentType):
    """
    Internal base carrying the derived views shared by Cardinal and Flag.
    """

    @property
    def multiple(self):
        """True for list types ("text-list", "number-list")."""
        return self._type.endswith("-list")

    @property
    def element(self):
        """The scalar type tag of a single value ("text", "number", "boolean")."""
        return self._type.removesuffix("-list")


class Cardinal(_Argument):
    """
    Positional, value-bearing argument specification.

    Highlights
    - Bound to positional tokens in declaration order.
    - A list-typed Cardinal is variadic: it takes every remaining positional token,
      so it must be the last one a command declares (enforced by Command).
    - Booleans are not positional; use a Flag.

    Properties
    - The names listed in __introspectable__ are exposed as read-only attributes.
    """

    __introspectable__ = (
        "type",
        "required",
        "choices",
        "default",
        "validate",
        "descr",
        "hidden",
    )

    def __new__(
            cls,
            type="text",
            /,
            required=False,
            choices=(),
            default=Unset,
            validate=Unset,
            descr=Unset,
            *,
            hidden=False
    ):
        metadata = {
            "type": type,
            "required": bool(required),
            "choices": choices,
            "default": default,
            "validate": validate,
            "descr": descr,
            "hidden": bool(hidden),
        }
        _sanitize_metadata(cls, metadata)
        if metadata["type"] == "boolean":
            raise ValueError(f"{cls.__typename__} cannot be boolean, use a flag instead")

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        return self


class Flag(_Argument):
    """
    Named argument specification (--name / -a).

    Highlights
    - Boolean flags never consume the next token; they are set by presence, by an
      inline value (--name=false) or negated through --no-name.
    - Value flags take the next token or an inline "=value"; list flags collect
      repeated occurrences.
    - alias: optional single letter or digit used as -a; boolean aliases can be
      bundled (-abc).
    """

    __introspectable__ = (
        "type",
        "alias",
        "required",
        "choices",
        "default",
        "validate",
        "descr",
        "hidden",
    )

    def __new__(
            cls,
            type="boolean",
            /,
            alias=Unset,
            required=False,
            choices=(),
            default=Unset,
            validate=Unset,
            descr=Unset,
            *,
            hidden=False
    ):
        metadata = {
            "type": type,
            "alias": alias,
            "required": bool(required),
            "choices": choices,
            "default": default,
            "validate": validate,
            "descr": descr,
            "hidden": bool(hidden),
        }
        _sanitize_metadata(cls, metadata)

        if not isinstance(alias, str | Unset):
            raise TypeError(f"{cls.__typename__} 'alias' must be a string")
        elif isinstance(alias, str) and not re.fullmatch(r"[A-Za-z0-9]", alias := alias.removeprefix("-")):
            raise ValueError(f"{cls.__typename__} 'alias' must be a single letter or digit")
        metadata["alias"] = coalesce(alias)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        return self


__all__ = (
    # Classes
    "Cardinal",
    "Flag",

    # Functions
    "number",

    # Constants
    "TYPES",
)
