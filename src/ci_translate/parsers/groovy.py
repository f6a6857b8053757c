"""Tokenizer and block parser for declarative Jenkinsfiles.

Declarative pipelines are a restricted Groovy DSL: nested blocks of
``name args { body }`` statements. The parser reads that shape only. The
bodies of ``script`` and ``expression`` blocks are free-form Groovy and are
kept as raw text.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field
from typing import Any

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>[ \t\r\f]+|\\\n)
    |(?P<newline>\n)
    |(?P<comment>//[^\n]*|/\*.*?\*/)
    |(?P<string>'''.*?'''|\"\"\".*?\"\"\"|'(?:\\.|[^'\\\n])*'|"(?:\\.|[^"\\\n])*")
    |(?P<number>\d+(?:\.\d+)?)
    |(?P<word>[A-Za-z_$][A-Za-z0-9_$]*(?:\.[A-Za-z_$][A-Za-z0-9_$]*)*)
    |(?P<op>==~|==|!=|<=|>=|&&|\|\||=~|->|\?\.|\*\.)
    |(?P<punct>[{}()\[\],:;=@])
    |(?P<other>[-+*/%!<>?.~&|^])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "$": "$"}
_ESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)

# Blocks whose body is Groovy code rather than DSL statements
RAW_BLOCKS = frozenset({"script", "expression"})


class GroovySyntaxError(Exception):
    """The Jenkinsfile does not have the shape of a declarative pipeline."""

    def __init__(self, message: str, line: int | None = None) -> None:
        """Initialize GroovySyntaxError.

        Args:
        ----
            message: Error message describing what went wrong.
            line: 1-based line number of the offending token.

        """
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)


@dataclass(frozen=True)
class Token:
    """One lexical token."""

    kind: str
    text: str
    start: int
    end: int
    line: int


@dataclass(frozen=True)
class GString:
    """A string literal; ``interpolated`` for double-quoted Groovy strings."""

    value: str
    interpolated: bool = False

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Identifier:
    """A bare (possibly dotted) name such as ``any`` or ``env.BRANCH_NAME``."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Expression:
    """A Groovy expression kept as source text."""

    text: str

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class Call:
    """A method call used as a value, e.g. ``credentials('deploy-key')``."""

    name: str
    args: tuple[Any, ...] = ()
    kwargs: tuple[tuple[str, Any], ...] = ()

    def __str__(self) -> str:
        rendered = [repr(str(a)) for a in self.args]
        rendered.extend(f"{k}: {v!r}" for k, v in self.kwargs)
        return f"{self.name}({', '.join(rendered)})"


@dataclass
class Statement:
    """One DSL statement.

    Attributes
    ----------
        name: Statement keyword or method name (``stage``, ``sh``, ...).
        args: Positional arguments.
        kwargs: Named arguments.
        body: Nested statements of a ``{ ... }`` block, None without a block.
        raw: Source text of a raw block (``script``, ``expression``).
        value: Assigned value for ``NAME = value`` statements.
        is_assignment: Whether the statement is an assignment.
        line: 1-based source line.

    """

    name: str
    args: list[Any] = field(default_factory=list)
    kwargs: dict[str, Any] = field(default_factory=dict)
    body: list[Statement] | None = None
    raw: str | None = None
    value: Any = None
    is_assignment: bool = False
    line: int = 0

    @property
    def first_arg(self) -> Any:
        """The first positional argument, or None."""
        return self.args[0] if self.args else None

    def children(self, name: str) -> list[Statement]:
        """Nested statements with the given name, in source order."""
        return [s for s in self.body or [] if s.name == name]

    def child(self, name: str) -> Statement | None:
        """The last nested statement with the given name."""
        found = self.children(name)
        return found[-1] if found else None

    def argument(self, key: str, position: int | None = 0) -> Any:
        """Get a named argument, falling back to a positional one."""
        if key in self.kwargs:
            return self.kwargs[key]
        if position is not None and len(self.args) > position:
            return self.args[position]
        return None


def tokenize(source: str) -> list[Token]:
    """Split Jenkinsfile source into tokens, dropping whitespace and comments.

    Raises
    ------
        GroovySyntaxError: On a character no token starts with.

    """
    tokens: list[Token] = []
    position = 0
    line = 1
    while position < len(source):
        match = _TOKEN_PATTERN.match(source, position)
        if match is None:
            raise GroovySyntaxError(f"unexpected character {source[position]!r}", line)
        kind = match.lastgroup or "other"
        text = match.group()
        if kind not in ("space", "newline", "comment"):
            tokens.append(Token(kind, text, match.start(), match.end(), line))
        line += text.count("\n")
        position = match.end()
    return tokens


def unquote(literal: str) -> GString:
    """Turn a string token into its value.

    Triple-quoted strings are dedented and lose their first empty line,
    the way ``sh '''...'''`` scripts are usually written.

    Examples
    --------
        >>> unquote("'make test'")
        GString(value='make test', interpolated=False)

    """
    interpolated = literal.startswith('"')
    if literal[:3] in ("'''", '"""'):
        body = literal[3:-3]
        if body.startswith("\n"):
            body = body[1:]
        body = textwrap.dedent(body)
    else:
        body = literal[1:-1]
    body = _ESCAPE_PATTERN.sub(lambda m: _ESCAPES.get(m.group(1), "\\" + m.group(1)), body)
    return GString(body, interpolated=interpolated)


class BlockParser:
    """Recursive-descent parser for declarative pipeline statements."""

    def __init__(self, source: str) -> None:
        """Initialize the parser with the full Jenkinsfile source."""
        self.source = source
        self.tokens = tokenize(source)
        self.position = 0

    def parse(self) -> list[Statement]:
        """Parse the whole file into top-level statements.

        Raises
        ------
            GroovySyntaxError: If the statements or braces are malformed.

        """
        return self._statements(closing=None)

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token | None:
        index = self.position + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise GroovySyntaxError("unexpected end of file")
        self.position += 1
        return token

    def _at(self, text: str) -> bool:
        token = self._peek()
        return token is not None and token.text == text and token.kind != "string"

    def _expect(self, text: str) -> Token:
        token = self._peek()
        if token is None or token.text != text:
            raise self._error(f"expected '{text}'")
        return self._next()

    def _error(self, message: str) -> GroovySyntaxError:
        token = self._peek()
        if token is None:
            return GroovySyntaxError(f"{message}, got end of file")
        return GroovySyntaxError(f"{message}, got {token.text!r}", token.line)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _statements(self, closing: str | None) -> list[Statement]:
        statements: list[Statement] = []
        while True:
            token = self._peek()
            if token is None:
                if closing is not None:
                    raise GroovySyntaxError(f"missing '{closing}'")
                return statements
            if closing is not None and token.text == closing:
                return statements
            if token.text == ";":
                self._next()
                continue
            statements.append(self._statement())

    def _statement(self) -> Statement:
        token = self._next()
        annotation = ""
        if token.text == "@":
            annotation = "@"
            token = self._next()
        if token.kind != "word":
            raise GroovySyntaxError(f"expected a statement, got {token.text!r}", token.line)

        statement = Statement(name=annotation + token.text, line=token.line)
        last_line = token.line

        if self._at("="):
            self._next()
            statement.is_assignment = True
            statement.value = self._value_expression(token.line)
            return statement

        if token.text == "def":
            # Local variable declarations are kept as raw Groovy
            statement.raw = self._rest_of_line(token.line)
            return statement

        if self._at("("):
            self._next()
            self._arguments(statement, closing=")")
            last_line = self._expect(")").line
        elif self._continues_on(last_line) and not self._at("{"):
            self._arguments(statement, closing=None, line=last_line)

        if self._at("{"):
            open_brace = self._next()
            if statement.name in RAW_BLOCKS:
                statement.raw = self._raw_block(open_brace)
            else:
                statement.body = self._statements(closing="}")
                self._expect("}")
        return statement

    def _continues_on(self, line: int) -> bool:
        token = self._peek()
        return token is not None and token.line == line and token.text not in ("}", ";")

    def _rest_of_line(self, line: int) -> str:
        start = self.position
        while self._continues_on(line):
            if any(self._at(t) for t in ("{", "(", "[")):
                self._skip_group()
            else:
                self._next()
        if start == self.position:
            return ""
        return self.source[self.tokens[start].start : self.tokens[self.position - 1].end]

    def _raw_block(self, open_brace: Token) -> str:
        depth = 1
        while depth:
            token = self._next()
            if token.kind == "string":
                continue
            if token.text == "{":
                depth += 1
            elif token.text == "}":
                depth -= 1
        close = self.tokens[self.position - 1]
        return textwrap.dedent(self.source[open_brace.end : close.start]).strip()

    # ------------------------------------------------------------------
    # Arguments and values
    # ------------------------------------------------------------------

    def _arguments(self, statement: Statement, closing: str | None, line: int = 0) -> None:
        """Parse ``a, b, key: value`` into the statement's arguments.

        Without a closing token the list ends at the end of the line,
        unless the line ends with a comma.
        """
        while True:
            if closing is not None and self._at(closing):
                return
            if closing is None and not self._continues_on(line):
                return

            first = self._peek()
            second = self._peek(1)
            if (
                first is not None
                and second is not None
                and first.kind in ("word", "string")
                and second.text == ":"
            ):
                self._next()
                self._next()
                key = unquote(first.text).value if first.kind == "string" else first.text
                statement.kwargs[key] = self._value_expression(second.line)
            else:
                statement.args.append(self._value_expression(first.line if first else line))

            if not self._at(","):
                if closing is not None and not self._at(closing):
                    raise self._error(f"expected ',' or '{closing}'")
                return
            comma = self._next()
            line = comma.line
            # A trailing comma continues the list on the next line
            next_token = self._peek()
            if next_token is not None:
                line = next_token.line

    def _value_expression(self, line: int) -> Any:
        """Parse a value; operators make it a raw ``Expression``."""
        start = self.position
        value = self._value()
        token = self._peek()
        if token is not None and token.line == line and (
            token.kind in ("op", "other") or self._at("[")
        ):
            while self._continues_on(line) and not any(self._at(t) for t in (",", ")", "]")):
                if any(self._at(t) for t in ("{", "(", "[")):
                    self._skip_group()
                    continue
                self._next()
            end = self.tokens[self.position - 1].end
            return Expression(self.source[self.tokens[start].start : end].strip())
        return value

    def _skip_group(self) -> None:
        pairs = {"{": "}", "(": ")", "[": "]"}
        closing = [pairs[self._next().text]]
        while closing:
            token = self._next()
            if token.kind == "string":
                continue
            if token.text in pairs:
                closing.append(pairs[token.text])
            elif token.text == closing[-1]:
                closing.pop()

    def _value(self) -> Any:
        token = self._next()
        if token.kind == "string":
            return unquote(token.text)
        if token.kind == "number":
            return float(token.text) if "." in token.text else int(token.text)
        if token.text == "[":
            return self._list_or_map()
        if token.kind == "word":
            if token.text in ("true", "false"):
                return token.text == "true"
            if token.text == "null":
                return None
            if self._at("("):
                self._next()
                call = Statement(name=token.text, line=token.line)
                self._arguments(call, closing=")")
                self._expect(")")
                return Call(call.name, tuple(call.args), tuple(call.kwargs.items()))
            return Identifier(token.text)
        if token.text in ("-", "!"):
            inner = self._value()
            return Expression(f"{token.text}{inner}")
        raise GroovySyntaxError(f"expected a value, got {token.text!r}", token.line)

    def _list_or_map(self) -> list[Any] | dict[str, Any]:
        if self._at(":"):
            # Empty map literal [:]
            self._next()
            self._expect("]")
            return {}
        holder = Statement(name="[]")
        self._arguments(holder, closing="]")
        self._expect("]")
        if holder.kwargs and not holder.args:
            return dict(holder.kwargs)
        return holder.args


def parse_jenkinsfile(source: str) -> list[Statement]:
    """Parse Jenkinsfile source into top-level statements.

    Raises
    ------
        GroovySyntaxError: If the source is not a well-formed declarative file.

    """
    return BlockParser(source).parse()
