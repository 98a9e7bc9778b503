"""
Sprout faults (errors and warnings) and rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for every user-facing issue,
  grouped by the component that raises it.
- CommandException / CommandWarning: base types that carry message + options and
  know how to render themselves (rich) in a short, lowercased, actionable way.
- trigger(): central entry point to surface any fault (raise/warn, or print in
  shell mode).

Taxonomy
- parsing      ParseError                      (names the offending field)
- routing      UnknownCommandError, MissingSubcommandError
- discovery    DiscoveryError                  (path + underlying cause)
- composition  DependencyCycleError, ExtensionConflictError, SetupError,
               CapabilityError
- warnings     ExtraCardinalsWarning, EmptyCommandWarning, TeardownWarning

UX goals
- Soft but technical language: short titles, one-sentence bodies, a single hint.
- Styling is overridable from the host application through __main__.__styles__,
  program name through __main__.__prog__, codes through __main__.__codes__.

Integration
- Parser/discovery/runtime build faults with options (code, title, hint, and any
  field the renderer or caller may need) and either raise them directly or go
  through trigger(fault, **options).
"""
import sys
import warnings
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, coalesce

console = Console(stderr=True)


class FaultCode(IntEnum):
    """
    canonical fault codes used across sprout (stable identifiers).

    grouping (by component)
    - routing (111xx)
      • UNKNOWN_COMMAND, UNKNOWN_SUBCOMMAND, MISSING_SUBCOMMAND
    - parsing (112xx)
      • UNKNOWN_FLAG, FLAG_ASSIGNMENT, MISSING_VALUE, INVALID_NUMBER,
        INVALID_CHOICE, MISSING_ARGUMENT, MISSING_FLAG, VALIDATION_FAILED
    - discovery (113xx)
      • UNIT_LOAD_FAILED, MALFORMED_UNIT, NAME_CLASH
    - composition (114xx)
      • DEPENDENCY_CYCLE, EXTENSION_CONFLICT, SETUP_FAILED, MISSING_CAPABILITY
    - warnings (12xxx)
      • EXTRA_CARDINALS, EMPTY_COMMAND, TEARDOWN_FAILED

    normalize() lets the host remap codes to its own labels through a
    __codes__ mapping in __main__.
    """
    # --- routing errors (111xx) ---
    UNKNOWN_COMMAND     = 11101
    UNKNOWN_SUBCOMMAND  = 11102
    MISSING_SUBCOMMAND  = 11103

    # --- parsing errors (112xx) ---
    UNKNOWN_FLAG        = 11201
    FLAG_ASSIGNMENT     = 11202
    MISSING_VALUE       = 11203
    INVALID_NUMBER      = 11204
    INVALID_CHOICE      = 11205
    MISSING_ARGUMENT    = 11206
    MISSING_FLAG        = 11207
    VALIDATION_FAILED   = 11208

    # --- discovery errors (113xx) ---
    UNIT_LOAD_FAILED    = 11301
    MALFORMED_UNIT      = 11302
    NAME_CLASH          = 11303

    # --- composition errors (114xx) ---
    DEPENDENCY_CYCLE    = 11401
    EXTENSION_CONFLICT  = 11402
    SETUP_FAILED        = 11403
    MISSING_CAPABILITY  = 11404

    # --- warnings (12xxx) ---
    EXTRA_CARDINALS     = 12201
    EMPTY_COMMAND       = 12101
    TEARDOWN_FAILED     = 12401

    def normalize(self):
        """
        return a host-normalized string for this code.
        """
        return str(getattr(sys.modules["__main__"], "__codes__", {}).get(self, self.value))


def _detail(name, /):
    # read-only accessor over a fault option
    return property(lambda self: self.options.get(name), doc=f"fault option {name!r}")


def _render(fault, palette, /):
    """
    build the rich renderable shared by errors and warnings.

    options read from the fault
    - prog (falls back to __main__.__prog__, then "sprout")
    - title / code / hint
    - colorful (default True), fancy (default False)
    """
    main = sys.modules["__main__"]
    styles = defaultdict(str, palette | getattr(main, "__styles__", {}))
    colorful = fault.options.get("colorful", True)

    def text(fragment, style=""):
        if not fragment:
            return Text("")
        if isinstance(fragment, Text):
            return fragment
        return Text(str(fragment), styles[style] if colorful else "")

    prog = fault.options.get("prog") or getattr(main, "__prog__", "sprout")
    header = Text.assemble(
        "[ ",
        text(prog, "prog-name"),
        " — ",
        text(fault.code.normalize(), "code"),
        " | ",
        text(fault.title.title(), "title"),
        " ]",
    )
    message = text(fault.message, "message")
    hint = Text("")
    if fault.hint:
        hint = Text.assemble(text(" → ", "hint-arrow"), text(fault.hint, "hint"))

    if fault.options.get("fancy", False):
        return Panel(Group(message, hint), title=header, title_align="left")
    return Group(header, message, hint)


class CommandException(Exception):
    """
    base error for every fatal sprout fault.

    contract
    - message: short, lowercased sentence.
    - options: read-only mapping; recognized keys are code, title, hint, prog,
      colorful, fancy, shell plus any subclass-specific field.
    """
    __code__ = FaultCode.UNKNOWN_COMMAND
    __title__ = "command error"
    __palette__ = {
        "prog-name": "bold #E6E6F0",
        "code": "bold #00E5FF",
        "title": "bold #FF4DA6",
        "message": "#C8C8D0",
        "hint-arrow": "#9CE19C dim",
        "hint": "italic #9CE19C",
    }

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        self.message = coalesce(message, "")
        self.options = MappingProxyType(options)
        super().__init__(self.message)

    code = property(lambda self: self.options.get("code", type(self).__code__))
    title = property(lambda self: self.options.get("title", type(self).__title__))
    hint = _detail("hint")

    def __str__(self):
        return self.message

    def __rich__(self):
        return _render(self, type(self).__palette__)

    def __trigger__(self):
        if not self.options.get("shell", False):
            raise self
        console.print(self)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class ParseError(CommandException):
    """bad, missing, or invalid argument/flag value; `field` names it."""
    __code__ = FaultCode.VALIDATION_FAILED
    __title__ = "invalid input"
    field = _detail("field")


class UnknownCommandError(CommandException):
    """no command matched; carries the ranked `suggestions` and matched `path`."""
    __code__ = FaultCode.UNKNOWN_COMMAND
    __title__ = "unknown command"
    suggestions = property(lambda self: self.options.get("suggestions", ()))
    path = property(lambda self: self.options.get("path", ()))


class MissingSubcommandError(CommandException):
    __code__ = FaultCode.MISSING_SUBCOMMAND
    __title__ = "missing subcommand"


class DiscoveryError(CommandException):
    """one unit could not be turned into a command or extension."""
    __code__ = FaultCode.UNIT_LOAD_FAILED
    __title__ = "discovery failed"
    path = _detail("path")
    cause = _detail("cause")


class DependencyCycleError(CommandException):
    __code__ = FaultCode.DEPENDENCY_CYCLE
    __title__ = "dependency cycle"
    extensions = property(lambda self: tuple(self.options.get("extensions", ())))


class ExtensionConflictError(CommandException):
    __code__ = FaultCode.EXTENSION_CONFLICT
    __title__ = "extension conflict"
    extension = _detail("extension")


class SetupError(CommandException):
    __code__ = FaultCode.SETUP_FAILED
    __title__ = "extension setup failed"
    extension = _detail("extension")
    cause = _detail("cause")


class CapabilityError(CommandException, KeyError):
    __code__ = FaultCode.MISSING_CAPABILITY
    __title__ = "missing capability"
    key = _detail("key")


class CommandWarning(Warning):
    """
    base for non-fatal faults; rendered like errors with a softer palette.
    """
    __code__ = FaultCode.EMPTY_COMMAND
    __title__ = "command warning"
    __palette__ = {
        "prog-name": "bold #E6E6F0",
        "code": "bold #FFB400",
        "title": "bold #FFC2E0",
        "message": "#D6D6DE",
        "hint-arrow": "#B8EFAF dim",
        "hint": "italic #B8EFAF",
    }

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        self.message = coalesce(message, "")
        self.options = MappingProxyType(options)
        super().__init__(self.message)

    code = property(lambda self: self.options.get("code", type(self).__code__))
    title = property(lambda self: self.options.get("title", type(self).__title__))
    hint = _detail("hint")

    def __str__(self):
        return self.message

    def __rich__(self):
        return _render(self, type(self).__palette__)

    def __trigger__(self):
        if not self.options.get("shell", False):
            return warnings.warn(self, stacklevel=self.options.get("stacklevel", 4))
        console.print(self)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class ExtraCardinalsWarning(CommandWarning):
    __code__ = FaultCode.EXTRA_CARDINALS
    __title__ = "extra arguments"
    residual = property(lambda self: tuple(self.options.get("residual", ())))


class EmptyCommandWarning(CommandWarning):
    __code__ = FaultCode.EMPTY_COMMAND
    __title__ = "empty command"


class TeardownWarning(CommandWarning):
    __code__ = FaultCode.TEARDOWN_FAILED
    __title__ = "extension teardown failed"
    extension = _detail("extension")
    cause = _detail("cause")


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods (see base classes).
    - options are merged into the fault via __replace__(**options) before triggering.
    - outside shell mode errors are raised and warnings go through warnings.warn;
      in shell mode both are printed on the stderr console.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    fault.__replace__(**options).__trigger__()


__all__ = (
    "FaultCode",
    "CommandException",
    "ParseError",
    "UnknownCommandError",
    "MissingSubcommandError",
    "DiscoveryError",
    "DependencyCycleError",
    "ExtensionConflictError",
    "SetupError",
    "CapabilityError",
    "CommandWarning",
    "ExtraCardinalsWarning",
    "EmptyCommandWarning",
    "TeardownWarning",
    "trigger",
)
