"""
Sprout runtime (composer).

Scope
- Runtime: assembled once from a command tree, extensions, global middleware
  and host modules; run(argv) executes one invocation and returns an exit code.
- compose(): Runtime factory that merges units discovered under a source
  directory with explicitly given commands and extensions.
- invoke(): run and exit the process with the outcome.
- ConsoleSink: default presentation sink printing on a rich stderr console.

Assembly (Runtime.__init__)
- Top-level names and aliases must be unique.
- Nodes with neither handler nor children emit an EmptyCommandWarning.
- Extensions are ordered with toposort(); DependencyCycleError and
  ExtensionConflictError are raised here, before anything runs.

One run
1. Route argv. No match: run the default command when one is configured, else
   render an UnknownCommandError with the ranked suggestions and return 1.
   A grouping node (no handler) renders a MissingSubcommandError and returns 1.
2. Set up every extension in order on a fresh Context. A failure stops the
   sequence and raises SetupError once the completed ones are torn down.
3. Parse the remaining tokens against the node; a ParseError is rendered and the
   run returns 1. Surplus positionals render an ExtraCardinalsWarning, which
   also lands in Runtime.faults, and the run goes on.
4. Run global middleware, then the node's middleware, then the handler.
5. Tear down the set-up extensions in reverse order whatever happened. A
   teardown failure becomes a TeardownWarning in Runtime.faults, is logged and
   never hides the outcome of the run.

Handler errors propagate, unless a fallback(error, context) hook is bound, in
which case it is called and the run returns 1.
"""
import logging
import shlex
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from rich.console import Console
from rich.text import Text

from .commands import Command
from .context import Context
from .discovery import discover, load
from .extensions import toposort
from .faults import *
from .parser import parse
from .router import route
from .utils import *

logger = logging.getLogger(__name__)


class ConsoleSink:
    """
    Presentation sink: render(*lines) prints each line (str or rich renderable).

    Options
    - colorful: style faults (default True).
    - fancy: wrap faults in a panel (default False).
    """

    def __init__(self, console=Unset, /, *, colorful=True, fancy=False):
        self.console = Console(stderr=True, highlight=False) if console is Unset else console
        self.colorful = bool(colorful)
        self.fancy = bool(fancy)

    def render(self, *lines):
        for line in lines:
            if isinstance(line, CommandException | CommandWarning):
                line = line.__replace__(colorful=self.colorful, fancy=self.fancy)
            self.console.print(line)


def _tokens(argv, /):
    if argv is Unset:
        return tuple(sys.argv[1:])
    if isinstance(argv, str):
        return tuple(shlex.split(argv))
    if not isinstance(argv, Iterable):
        raise TypeError("run() argument must be a string or an iterable of strings")
    return tuple(map(str, argv))


def _brand():
    if prog := getattr(sys.modules["__main__"], "__prog__", None):
        return str(prog)
    return Path(sys.argv[0]).stem if sys.argv and sys.argv[0] else "sprout"


class Runtime:
    """
    An assembled command tree ready to run.

    Parameters
    - commands: Iterable[Command], the top level of the tree.
    - extensions: Iterable[Extension], ordered by dependency on assembly.
    - middleware: Iterable[Callable[[context, next], object]], outermost layers.
    - modules: Mapping of capabilities registered on every run's Context.
    - brand: program name used in messages (defaults to __main__.__prog__, then
      the script name).
    - default: Command run with the whole argv when routing finds nothing.
    - sink: object with render(*lines); defaults to a ConsoleSink.

    Properties (read-only)
    - commands, extensions (setup order), middleware, brand, default.
    - faults: faults rendered or recorded by the last run.
    - diagnostics: discovery diagnostics (see compose()).
    """

    commands = mirror("commands")
    extensions = mirror("extensions")
    middleware = mirror("middleware")
    brand = mirror("brand")
    default = mirror("default")
    faults = mirror("faults")
    diagnostics = mirror("diagnostics")

    def __init__(
            self,
            commands,
            /,
            extensions=(),
            middleware=(),
            modules=None,
            *,
            brand=Unset,
            default=Unset,
            sink=Unset
    ):
        if isinstance(commands, Command):
            commands = (commands,)
        commands = tuple(commands)
        if not all(isinstance(command, Command) for command in commands):
            raise TypeError("runtime 'commands' must be an iterable of commands")

        taken = set()
        for command in commands:
            if clash := taken & {command.name, *command.aliases}:
                raise ValueError(f"runtime command name {clash.pop()!r} is already in use")
            taken |= {command.name, *command.aliases}

        for command in commands:
            for path, node in command.walk():
                if node.handler is None and not node.children:
                    trigger(EmptyCommandWarning(
                        f"command {" ".join(path)!r} has neither a handler nor subcommands",
                        hint="give it a handler or at least one subcommand",
                    ))

        if not all(map(callable, middleware := tuple(middleware))):
            raise TypeError("runtime 'middleware' must be an iterable of callables")
        if not (modules is None or isinstance(modules, Mapping)):
            raise TypeError("runtime 'modules' must be a mapping")
        if not (default is Unset or isinstance(default, Command)):
            raise TypeError("runtime 'default' must be a command")
        if not isinstance(brand, str | Unset):
            raise TypeError("runtime 'brand' must be a string")
        if not (sink is Unset or callable(getattr(sink, "render", None))):
            raise TypeError("runtime 'sink' must have a render method")

        self._commands = commands
        self._extensions = tuple(toposort(extensions))
        self._middleware = middleware
        self._modules = dict(modules or {})
        self._brand = _brand() if brand is Unset else brand
        self._default = coalesce(default)
        self._sink = ConsoleSink() if sink is Unset else sink
        self._faults = []
        self._diagnostics = ()
        self._fallback = None

    def fallback(self, callback, /):
        """
        Bind callback(error, context), called when a handler raises. Only once.
        """
        if not callable(callback):
            raise TypeError("@runtime.fallback must be applied to a callable")
        if self._fallback is not None:
            raise ValueError("runtime fallback is already bound")
        self._fallback = callback
        return callback

    def _render(self, fault, /, *lines):
        self._faults.append(fault)
        self._sink.render(fault.__replace__(prog=self._brand), *lines)

    def _listing(self, commands, /):
        return [
            Text.assemble("  ", (command.name, "bold"), "    ", command.descr or "")
            for command in commands
            if not command.hidden
        ]

    def _unknown(self, found, tokens, /):
        if found.path:
            parent = " ".join((self._brand, *found.path))
            message = f'subcommand "{found.tokens[0]}" not found for "{parent}"'
            code = FaultCode.UNKNOWN_SUBCOMMAND
        elif tokens:
            parent = self._brand
            message = f'command "{tokens[0]}" not found'
            code = FaultCode.UNKNOWN_COMMAND
        else:
            parent = self._brand
            message = "no command given"
            code = FaultCode.UNKNOWN_COMMAND

        if found.suggestions:
            hint = "did you mean " + ", ".join(f'"{suggestion.name}"' for suggestion in found.suggestions) + "?"
            lines = [
                Text.assemble("  ", (suggestion.name, "bold"), "    ", suggestion.descr or "")
                for suggestion in found.suggestions
            ]
        else:
            hint = f'available commands for "{parent}" are listed below'
            lines = self._listing(self._commands)

        self._render(
            UnknownCommandError(message, code=code, hint=hint, suggestions=found.suggestions, path=found.path),
            *lines,
        )

    def _grouping(self, command, tokens, /):
        if tokens and not tokens[0].startswith("-"):
            fault = UnknownCommandError(
                f'subcommand "{tokens[0]}" not found for "{self._brand} {command.name}"',
                code=FaultCode.UNKNOWN_SUBCOMMAND,
                hint="pick one of the subcommands listed below",
                path=(command.name,),
            )
        else:
            fault = MissingSubcommandError(
                f'"{self._brand} {command.name}" needs a subcommand',
                hint="pick one of the subcommands listed below",
            )
        self._render(fault, *self._listing(command.children))

    def _chain(self, command, context, /):
        layers = (*self._middleware, *command.middleware)
        index = 0
        done = False

        @rename("next")
        def advance():
            nonlocal index, done
            if index < len(layers):
                layer = layers[index]
                index += 1
                return layer(context, advance)
            if not done:
                done = True
                return command.handler(context)

        return advance()

    def _teardown(self, completed, context, /):
        for extension in reversed(completed):
            if extension.teardown is None:
                continue
            logger.debug("tearing down extension %s", extension.name)
            try:
                extension.teardown(context)
            except Exception as error:
                warning = TeardownWarning(
                    f"extension {extension.name!r} failed to tear down: {error}",
                    extension=extension.name,
                    cause=error,
                )
                logger.warning("%s", warning)
                self._faults.append(warning)

    def run(self, argv=Unset, /):
        """
        Execute one invocation and return its exit code (0 or 1).

        Parameters
        - argv: Unset (sys.argv[1:]), a shell-like string, or an iterable of
          strings.

        Raises
        - SetupError when an extension fails to set up.
        - whatever the handler raises, unless a fallback is bound.
        """
        tokens = _tokens(argv)
        self._faults = []
        logger.debug("routing %r", tokens)

        found = route(tokens, self._commands)
        if found.command is not None:
            command, remaining = found.command, found.tokens
        elif self._default is not None:
            command, remaining = self._default, tokens
        else:
            self._unknown(found, tokens)
            return 1

        if command.handler is None:
            self._grouping(command, remaining)
            return 1

        context = Context(self._modules, brand=self._brand, command=command, tokens=remaining)
        completed = []
        try:
            for extension in self._extensions:
                logger.debug("setting up extension %s", extension.name)
                try:
                    extension.setup(context)
                except Exception as error:
                    raise SetupError(
                        f"extension {extension.name!r} failed to set up: {error}",
                        extension=extension.name,
                        cause=error,
                    ) from error
                completed.append(extension)

            try:
                result = parse(remaining, command, notify=self._render)
            except ParseError as error:
                self._render(error)
                return 1
            context.arguments = result.arguments
            context.flags = result.flags
            context.residual = result.residual

            try:
                self._chain(command, context)
            except Exception as error:
                if self._fallback is None:
                    raise
                logger.debug("handler of %s failed, calling fallback", command.name, exc_info=True)
                self._fallback(error, context)
                return 1
            return 0
        finally:
            self._teardown(completed, context)


def compose(commands=(), /, source=Unset, **options):
    """
    Build a Runtime, merging units discovered under source.

    Parameters
    - commands: Iterable[Command] given explicitly (they come first).
    - source: Unset | str | os.PathLike, root of commands/ and extensions/.
    - options: Runtime options, plus `loader` and `workers` for discover().

    Discovery diagnostics end up on Runtime.diagnostics; they never abort.
    """
    commands = list(commands)
    extensions = list(options.pop("extensions", ()))
    loader = options.pop("loader", load)
    workers = options.pop("workers", None)

    diagnostics = ()
    if source is not Unset:
        found = discover(source, loader, workers=workers)
        commands.extend(found.commands)
        extensions.extend(found.extensions)
        diagnostics = found.diagnostics

    runtime = Runtime(commands, extensions=extensions, **options)
    runtime._diagnostics = tuple(diagnostics)
    return runtime


def invoke(runtime, argv=Unset, /):
    """
    Run runtime (or a Runtime built from an iterable of commands) and exit the
    process with its exit code.
    """
    if not isinstance(runtime, Runtime):
        runtime = Runtime(runtime)
    sys.exit(runtime.run(argv))


__all__ = (
    "ConsoleSink",
    "Runtime",
    "compose",
    "invoke",
)
