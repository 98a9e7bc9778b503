"""
Sprout argument parser.

Scope
- parse(tokens, schema): bind a token vector to a command's Cardinal/Flag schema
  and return typed values.
- distance(a, b): Levenshtein edit distance (unit costs), shared with the router.
- closest(word, candidates): best candidate within distance 3, for hints.

Token grammar
- "--" ends flag scanning; every later token is positional.
- --name value | --name=value | -a value | -a=value
- --name / -a for boolean flags (never consume the next token); inline boolean
  values are true/false/yes/no/on/off/1/0.
- -abc bundles boolean aliases.
- --no-name negates a boolean flag unless --name is also given.
- -5 / -0.5 are positional unless an alias claims the first character.

Resolution order per field
- coerce -> default -> required -> choices -> validator. Defaults are taken
  verbatim. The first failure raises ParseError naming the field.
"""
from collections import defaultdict

from .arguments import number
from .faults import *
from .utils import *

_BOOLEANS = {
    "true": True,
    "yes": True,
    "on": True,
    "1": True,
    "false": False,
    "no": False,
    "off": False,
    "0": False,
}


def distance(a, b, /):
    """
    Return the Levenshtein distance between a and b.

    Single-row dynamic programming: O(len(a) * len(b)) time, O(len(b)) space.
    Symmetric, and zero exactly when a == b.
    """
    row = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        previous, row[0] = row[0], i
        for j in range(1, len(b) + 1):
            previous, row[j] = row[j], min(
                row[j] + 1,                              # deletion
                row[j - 1] + 1,                          # insertion
                previous + (a[i - 1] != b[j - 1]),       # substitution
            )
    return row[-1]


def closest(word, candidates, /):
    """
    Return the candidate closest to word (case-insensitive) within distance 3,
    the first one on ties, or None.
    """
    best, score = None, 4
    for candidate in candidates:
        if (current := distance(str(word).lower(), str(candidate).lower())) < score:
            best, score = candidate, current
    return best


class ParseResult:
    """
    Outcome of parse().

    - arguments: dict[str, object] keyed by cardinal name (declaration order).
    - flags: dict[str, object] keyed by flag name (declaration order).
    - residual: tuple of positional tokens no cardinal consumed.

    Missing optional fields without a default resolve to None.
    """
    __slots__ = ("_arguments", "_flags", "_residual")

    arguments = mirror("arguments")
    flags = mirror("flags")
    residual = mirror("residual")

    def __init__(self, arguments, flags, residual=(), /):
        self._arguments = dict(arguments)
        self._flags = dict(flags)
        self._residual = tuple(residual)

    def __repr__(self):
        return f"parse-result(arguments={self._arguments!r}, flags={self._flags!r}, residual={self._residual!r})"

    def __eq__(self, other):
        if not isinstance(other, ParseResult):
            return NotImplemented
        return (self._arguments, self._flags, self._residual) == (other._arguments, other._flags, other._residual)

    __hash__ = None


def _negative(token):
    try:
        number(token)
    except ValueError:
        return False
    return True


def _flagshaped(token):
    return token.startswith("-") and token != "-" and not _negative(token)


def _fail(message, /, field, code, hint=None):
    raise ParseError(message, field=field, code=code, hint=hint)


def _scan(tokens, flags, /):
    """
    Split tokens into (positionals, given, negated).

    - given: dict[name, list[raw]] in order of appearance (booleans as bool).
    - negated: set of boolean flag names seen as --no-name.
    """
    aliases = {flag.alias: name for name, flag in flags.items() if flag.alias is not None}
    separator = tokens.index("--") if "--" in tokens else len(tokens)
    positionals, given, negated = [], defaultdict(list), set()

    def unknown(token, label):
        suggestion = closest(label, flags)
        _fail(
            f'unknown flag "{token}"',
            field=label,
            code=FaultCode.UNKNOWN_FLAG,
            hint=f'did you mean "--{suggestion}"?' if suggestion else None,
        )

    def boolean(name, raw):
        try:
            return _BOOLEANS[raw.strip().lower()]
        except KeyError:
            _fail(
                f'invalid value for flag "--{name}": expected true or false, got "{raw}"',
                field=name,
                code=FaultCode.FLAG_ASSIGNMENT,
            )

    index = 0
    while index < separator:
        token = tokens[index]
        index += 1

        if token.startswith("--"):
            label, equals, inline = token[2:].partition("=")
            if label not in flags:
                stem = label.removeprefix("no-")
                if stem != label and not equals and getattr(flags.get(stem), "type", None) == "boolean":
                    negated.add(stem)
                    continue
                unknown("--" + label, label)
            names = [label]
        elif _flagshaped(token) or (token.startswith("-") and token[1:2] in aliases):
            label, equals, inline = token[1:].partition("=")
            for letter in label:
                if letter not in aliases:
                    unknown("-" + letter, letter)
            names = [aliases[letter] for letter in label]
            if len(names) > 1:
                for name in names:
                    if flags[name].type != "boolean":
                        _fail(
                            f'flag "--{name}" takes a value and cannot be bundled in "{token}"',
                            field=name,
                            code=FaultCode.FLAG_ASSIGNMENT,
                        )
                if equals:
                    _fail(
                        f'bundled flags "{token}" cannot take a value',
                        field=names[-1],
                        code=FaultCode.FLAG_ASSIGNMENT,
                    )
        else:
            positionals.append(token)
            continue

        for name in names:
            if flags[name].type == "boolean":
                given[name].append(boolean(name, inline) if equals else True)
            elif equals:
                given[name].append(inline)
            elif index < separator and not _flagshaped(tokens[index]):
                given[name].append(tokens[index])
                index += 1
            else:
                _fail(
                    f'flag "--{name}" requires a value',
                    field=name,
                    code=FaultCode.MISSING_VALUE,
                )

    positionals.extend(tokens[separator + 1:])
    return positionals, given, negated


def _coerce(label, name, spec, raw, /):
    """
    Convert raw text (or a list of it) to the declared type.
    """
    match spec.element:
        case "number":
            try:
                if spec.multiple:
                    return [number(item) for item in raw]
                return number(raw)
            except ValueError:
                received = next((item for item in raw if not _negative(item)), raw) if spec.multiple else raw
                _fail(
                    f'invalid value for {label}: expected a number, got "{received}"',
                    field=name,
                    code=FaultCode.INVALID_NUMBER,
                )
        case "text":
            return list(raw) if spec.multiple else raw
        case _:
            return raw


def _resolve(label, name, spec, present, raw, /):
    """
    Run coerce -> default -> required -> choices -> validator for one field.
    """
    if not present:
        if spec.default is not Unset:
            return spec.default
        if spec.required:
            _fail(
                f"missing required {label}",
                field=name,
                code=FaultCode.MISSING_ARGUMENT if label.startswith("argument") else FaultCode.MISSING_FLAG,
                hint=spec.descr if isinstance(spec.descr, str) else None,
            )
        return None

    value = _coerce(label, name, spec, raw)

    if spec.choices:
        expected = ", ".join(f'"{choice}"' for choice in spec.choices)
        for item in value if spec.multiple else (value,):
            if item not in spec.choices:
                suggestion = closest(item, spec.choices)
                _fail(
                    f'invalid value for {label}: expected one of {expected}, got "{item}"',
                    field=name,
                    code=FaultCode.INVALID_CHOICE,
                    hint=f'did you mean "{suggestion}"?' if suggestion is not None else None,
                )

    if spec.validate is not None:
        match spec.validate(value):
            case False:
                _fail(f"validation failed for {label}", field=name, code=FaultCode.VALIDATION_FAILED)
            case str() as reason:
                _fail(f"validation failed for {label}: {reason}", field=name, code=FaultCode.VALIDATION_FAILED)

    return value


def parse(tokens, schema, /, *, notify=trigger):
    """
    Parse tokens against schema (anything exposing `cardinals` and `flags`
    mappings, normally a Command).

    Behavior
    - Flags are matched by long name or alias anywhere before "--".
    - Positionals bind to cardinals in declaration order; a list cardinal takes
      every remaining one. Leftovers end up in ParseResult.residual and emit an
      ExtraCardinalsWarning through notify (trigger by default, which warns).
    - Scalar flags keep their last occurrence; list flags accumulate.

    Returns
    - ParseResult

    Raises
    - ParseError naming the offending field (ParseError.field).
    """
    tokens = [str(token) for token in tokens]
    cardinals, flags = dict(schema.cardinals), dict(schema.flags)
    positionals, given, negated = _scan(tokens, flags)

    arguments, consumed = {}, 0
    for name, cardinal in cardinals.items():
        label = f'argument "{name}"'
        if cardinal.multiple:
            raw, present = positionals[consumed:], consumed < len(positionals)
            consumed = max(consumed, len(positionals))
        else:
            raw, present = positionals[consumed] if consumed < len(positionals) else None, consumed < len(positionals)
            consumed += present
        arguments[name] = _resolve(label, name, cardinal, present, raw)

    if residual := tuple(positionals[consumed:]):
        notify(ExtraCardinalsWarning(
            f"received {len(positionals)} positional argument{"s" if len(positionals) != 1 else ""} "
            f"but only {len(cardinals)} {"are" if len(cardinals) != 1 else "is"} declared, "
            f"ignoring {", ".join(residual)}",
            residual=residual,
        ))

    values = {}
    for name, flag in flags.items():
        label = f'flag "--{name}"'
        if name in given:
            raw = given[name] if flag.multiple else given[name][-1]
            values[name] = _resolve(label, name, flag, True, raw)
        elif name in negated:
            values[name] = _resolve(label, name, flag, True, False)
        else:
            values[name] = _resolve(label, name, flag, False, None)

    return ParseResult(arguments, values, residual)


__all__ = (
    "ParseResult",
    "parse",
    "distance",
    "closest",
)
