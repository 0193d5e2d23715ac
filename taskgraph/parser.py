"""Tokenizer and parser for composed task definitions.

A definition is a flow of task apps joined by ``&&``, with splits written
``<a || b>`` and transitions written ``a 'FAILED'->b`` or ``a 0->b``::

    aaa --p1=v1 'FAILED'->kill && <bbb || ccc> && ddd

Parsing produces a small tree of ``FlowNode``, ``SplitNode`` and
``AppNode`` objects which ``GraphBuilder`` turns into a ``Graph``.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .errors import DSLParseError


class TokenKind(Enum):
    IDENTIFIER = "identifier"
    LITERAL_STRING = "string"
    ANDAND = "&&"
    OROR = "||"
    ARROW = "->"
    DOUBLE_MINUS = "--"
    LT = "<"
    GT = ">"
    COLON = ":"
    SEMICOLON = ";"
    OPEN_PAREN = "("
    CLOSE_PAREN = ")"
    STAR = "*"
    EQUALS = "="


_TWO_CHAR_TOKENS = {k.value: k for k in (TokenKind.ANDAND, TokenKind.OROR, TokenKind.ARROW, TokenKind.DOUBLE_MINUS)}
_ONE_CHAR_TOKENS = {
    k.value: k
    for k in (
        TokenKind.LT,
        TokenKind.GT,
        TokenKind.COLON,
        TokenKind.SEMICOLON,
        TokenKind.OPEN_PAREN,
        TokenKind.CLOSE_PAREN,
        TokenKind.STAR,
        TokenKind.EQUALS,
    )
}

# '-' is allowed in names (a-b-c) but never as the start of '->'
_IDENTIFIER = re.compile(r"[A-Za-z0-9_$](?:[A-Za-z0-9_$.]|-(?!>))*")
_EXIT_CODE = re.compile(r"[0-9]+")

FAIL = "$FAIL"
END = "$END"


@dataclass
class Token:
    kind: TokenKind
    data: str
    start: int
    end: int

    def __str__(self):
        if self.kind in (TokenKind.IDENTIFIER, TokenKind.LITERAL_STRING):
            return self.data
        return self.kind.value


def unquote(text):
    """Strip the surrounding quotes of a string literal, collapsing doubled quotes."""
    quote = text[0]
    return text[1:-1].replace(quote + quote, quote)


class Tokenizer:
    def __init__(self, definition):
        self.definition = definition
        self.pos = 0
        self.tokens: List[Token] = []

    def error(self, position, message):
        return DSLParseError(self.definition, position, message)

    def tokenize(self) -> List[Token]:
        text = self.definition
        after_equals = False
        while self.pos < len(text):
            ch = text[self.pos]
            if after_equals:
                # an argument value runs up to the next separator
                after_equals = False
                if not ch.isspace():
                    self.lex_arg_value()
                continue
            if ch.isspace():
                self.pos += 1
                continue
            match = _IDENTIFIER.match(text, self.pos)
            if match:
                self.push(TokenKind.IDENTIFIER, match.end())
            elif text[self.pos:self.pos + 2] in _TWO_CHAR_TOKENS:
                self.push(_TWO_CHAR_TOKENS[text[self.pos:self.pos + 2]], self.pos + 2)
            elif ch in _ONE_CHAR_TOKENS:
                after_equals = ch == "="
                self.push(_ONE_CHAR_TOKENS[ch], self.pos + 1)
            elif ch in "'\"":
                self.lex_quoted_string(ch)
            elif ch == "&":
                raise self.error(self.pos, "expected '&&' but found '&'")
            elif ch == "|":
                raise self.error(self.pos, "expected '||' but found '|'")
            elif ch == "-":
                raise self.error(self.pos, "missing character '-'")
            else:
                raise self.error(self.pos, f"unexpected data in definition '{ch}'")
        return self.tokens

    def push(self, kind, end):
        self.tokens.append(Token(kind, self.definition[self.pos:end], self.pos, end))
        self.pos = end

    def lex_quoted_string(self, quote):
        """Lex a literal delimited by ``quote``; a doubled quote stands for one quote."""
        text = self.definition
        start = self.pos
        self.pos += 1
        while True:
            if self.pos >= len(text):
                raise self.error(start, "non terminating quoted string")
            if text[self.pos] == quote:
                if text.startswith(quote + quote, self.pos):
                    self.pos += 2
                    continue
                break
            self.pos += 1
        self.pos += 1
        self.tokens.append(Token(TokenKind.LITERAL_STRING, text[start:self.pos], start, self.pos))

    def lex_arg_value(self):
        """Lex an argument value, which may be only partly quoted ('hi'+payload)."""
        text = self.definition
        start = self.pos
        quote_open = False
        quotes_closed = 0
        quote_in_use = None
        if text[self.pos] in "'\"":
            quote_open = True
            quote_in_use = text[self.pos]
            self.pos += 1
        while self.pos < len(text) and not _ends_arg_value(text[self.pos], quote_open):
            ch = text[self.pos]
            if ch == quote_in_use or (quote_in_use is None and ch in "'\""):
                if quote_in_use == "'" and text.startswith("''", self.pos):
                    self.pos += 1
                else:
                    quote_open = not quote_open
                    if not quote_open:
                        quotes_closed += 1
            self.pos += 1
        value = text[start:self.pos]
        if quote_in_use is not None and quotes_closed == 0:
            raise self.error(start, "non terminating quoted string")
        if quotes_closed == 1 and len(value) > 1 and value[0] in "'\"" and value[-1] == value[0]:
            kind = TokenKind.LITERAL_STRING
        else:
            kind = TokenKind.IDENTIFIER
        self.tokens.append(Token(kind, value, start, self.pos))


def _ends_arg_value(ch, quote_open):
    if ch in "\r\n":
        return True
    return not quote_open and ch in "|; \t>"


# AST
@dataclass
class AppNode:
    name: str
    args: Dict[str, str] = field(default_factory=dict)
    transitions: List["TransitionNode"] = field(default_factory=list)
    label: Optional[str] = None

    def __str__(self):
        txt = f"{self.label}: {self.name}" if self.label else self.name
        for key, value in self.args.items():
            if " " in value:
                value = f"'{value}'"
            txt += f" --{key}={value}"
        for transition in self.transitions:
            txt += f" {transition}"
        return txt


@dataclass
class TransitionNode:
    """``status->target``; an unquoted status checks the exit code, a quoted one the exit status."""

    status: str
    is_exit_code_check: bool
    target: AppNode

    @property
    def is_fail_transition(self):
        return self.target.name == FAIL

    @property
    def is_end_transition(self):
        return self.target.name == END

    @property
    def is_special_transition(self):
        return self.is_fail_transition or self.is_end_transition

    def status_in_dsl_form(self):
        if self.is_exit_code_check:
            return self.status
        return f"'{self.status}'"

    def __str__(self):
        return f"{self.status_in_dsl_form()}->{self.target}"


@dataclass
class SplitNode:
    flows: List["FlowNode"]

    def __str__(self):
        return "<" + " || ".join(str(flow) for flow in self.flows) + ">"


@dataclass
class FlowNode:
    series: list

    def __str__(self):
        return " && ".join(str(node) for node in self.series)


class TaskDSLParser:
    """Recursive descent parser for a single composed task definition."""

    def __init__(self, definition):
        self.definition = definition
        self.tokens: List[Token] = []
        self.pos = 0

    def parse(self) -> FlowNode:
        if not self.definition.strip():
            raise DSLParseError(self.definition, 0, "out of data")
        self.tokens = Tokenizer(self.definition).tokenize()
        self.pos = 0
        flow = self.parse_node()
        token = self.peek()
        if token is not None:
            if token.kind is TokenKind.SEMICOLON:
                raise self.error(token.start, "multiple task sequences are not supported")
            raise self.error(token.start, f"unexpected data after end of definition '{token}'")
        return flow

    def error(self, position, message):
        return DSLParseError(self.definition, position, message)

    def parse_node(self):
        return self.parse_flow(self.parse_element())

    def parse_element(self):
        """One step of a flow: a parenthesised flow, a split or an app."""
        if self.maybe_eat(TokenKind.OPEN_PAREN):
            flow = self.parse_node()
            self.eat(TokenKind.CLOSE_PAREN)
            return flow
        label_token = self.peek()
        label = self.maybe_eat_label()
        if label is not None:
            if self.peek_kind(TokenKind.OPEN_PAREN):
                raise self.error(self.peek().start, "labels cannot be applied to parentheses")
            if self.peek_kind(TokenKind.LT):
                raise self.error(label_token.start, "labels cannot be applied to splits")
            second = self.peek()
            if self.maybe_eat_label() is not None:
                raise self.error(second.start, "only one label allowed per element")
        if self.peek_kind(TokenKind.LT):
            return self.parse_split()
        app = self.eat_app()
        app.label = label
        return app

    def parse_flow(self, first):
        series = []
        node = first
        while True:
            if isinstance(node, FlowNode):
                series.extend(node.series)
            else:
                series.append(node)
            if not self.maybe_eat(TokenKind.ANDAND):
                return FlowNode(series)
            node = self.parse_element()

    def parse_split(self):
        self.eat(TokenKind.LT)
        flows = [self.parse_node()]
        while self.maybe_eat(TokenKind.OROR):
            flows.append(self.parse_node())
        self.eat(TokenKind.GT)
        return SplitNode(flows)

    def maybe_eat_label(self):
        following = self.peek(1)
        if self.peek_kind(TokenKind.IDENTIFIER) and following is not None and following.kind is TokenKind.COLON:
            label = self.eat()
            self.eat(TokenKind.COLON)
            return label.data
        return None

    def eat_app(self):
        name = self.eat(TokenKind.IDENTIFIER, "expected app name")
        args = self.maybe_eat_args()
        transitions = self.maybe_eat_transitions()
        return AppNode(name.data, args, transitions)

    def maybe_eat_args(self):
        args = {}
        while self.maybe_eat(TokenKind.DOUBLE_MINUS):
            key = self.eat(TokenKind.IDENTIFIER, "expected argument name")
            self.eat(TokenKind.EQUALS)
            value = self.peek()
            if value is None or value.kind not in (TokenKind.IDENTIFIER, TokenKind.LITERAL_STRING):
                raise self.error(key.end, f"expected a value for argument '{key.data}'")
            self.eat()
            args[key.data] = unquote(value.data) if value.kind is TokenKind.LITERAL_STRING else value.data
        return args

    # App1 0->App2
    # App1 'a'->App2 '*'->App3
    def maybe_eat_transitions(self):
        transitions = []
        while True:
            if self.peek_kind(TokenKind.ARROW):
                raise self.error(self.peek().start, "'->' should be preceded by an exit code or status")
            possible_arrow = self.peek(1)
            if possible_arrow is None or possible_arrow.kind is not TokenKind.ARROW:
                break
            status = self.peek()
            if status.kind not in (TokenKind.IDENTIFIER, TokenKind.LITERAL_STRING, TokenKind.STAR):
                break
            self.eat()
            self.eat(TokenKind.ARROW)
            if self.peek_kind(TokenKind.COLON):
                raise self.error(self.peek().start, "transitions to label references are not supported")
            label = self.maybe_eat_label()
            target_name = self.eat(TokenKind.IDENTIFIER, "expected transition target")
            target = AppNode(target_name.data, self.maybe_eat_args(), [], label)
            if status.kind is TokenKind.LITERAL_STRING:
                transition = TransitionNode(unquote(status.data), False, target)
            elif status.kind is TokenKind.STAR:
                transition = TransitionNode("*", True, target)
            else:
                if not _EXIT_CODE.fullmatch(status.data):
                    raise self.error(
                        status.start, f"unquoted transition check must be a number '{status.data}'"
                    )
                transition = TransitionNode(status.data, True, target)
            transitions.append(transition)
        return transitions

    # Token stream
    def peek(self, offset=0):
        index = self.pos + offset
        if index < len(self.tokens):
            return self.tokens[index]
        return None

    def peek_kind(self, kind):
        token = self.peek()
        return token is not None and token.kind is kind

    def maybe_eat(self, kind):
        if self.peek_kind(kind):
            self.pos += 1
            return True
        return False

    def eat(self, kind=None, message=None):
        token = self.peek()
        if token is None:
            raise self.error(len(self.definition), "out of data")
        if kind is not None and token.kind is not kind:
            raise self.error(token.start, message or f"expected '{kind.value}' but found '{token}'")
        self.pos += 1
        return token


def parse(definition) -> FlowNode:
    return TaskDSLParser(definition).parse()
