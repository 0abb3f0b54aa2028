"""
Indentation-aware tokenizer for Squared source text.

The lexer works line by line. Blank lines and comment-only lines are skipped
without touching the indentation stack. Every other line first produces
INDENT/DEDENT tokens from its leading whitespace (tabs count as four columns),
then the tokens of its content, then a NEWLINE. At end of input the stack is
unwound back to its base level and an EOF token is appended.
"""
import re
from typing import List, Optional

from squared.sq_datatypes import (
    Token, IDENTIFIER, OBJECT_IDENTIFIER, NUMBER, BOXED_NUMBER, STRING, BOOLEAN,
    SYMBOL, NEWLINE, INDENT, DEDENT, EOF,
)
from squared.sq_errors import LexError

TAB_WIDTH = 4

BOOLEAN_WORDS = {"True": True, "False": False, "true": True, "false": False}

# Alternatives are tried in order, so two-character operators come before
# their one-character prefixes and boxed numerals before '!'.
_TOKEN_RE = re.compile(r"""
      (?P<boxed>!-?\d*\.?\d+!)
    | (?P<string>"[^"]*")
    | (?P<objid>\#[A-Za-z_][A-Za-z0-9_]*\#)
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<number>\d+(?:\.\d+)?)
    | (?P<op>\+=|-=|\*=|/=|==|!=|<=|>=)
    | (?P<symbol>[=,.+\-*/()\[\]{}<>!])
    | (?P<space>[ \t]+)
""", re.VERBOSE)

_LEADING_WS_RE = re.compile(r"[ \t]*")


def _comment_pattern(prefix: str) -> re.Pattern:
    if prefix == "#":
        # A '#' that opens an object identifier (#Name#) is not a comment.
        return re.compile(r"\#(?![A-Za-z_][A-Za-z0-9_]*\#)")
    return re.compile(re.escape(prefix))


class Lexer:
    """Converts source text into a flat token list in a single forward pass."""

    def __init__(self, source: str, *, comment_prefix: str = "--"):
        self.source = source
        self.comment_prefix = comment_prefix
        self._comment_re = _comment_pattern(comment_prefix)
        self.indent_stack: List[int] = [0]
        self.tokens: Optional[List[Token]] = None

    def tokenize(self) -> List[Token]:
        if self.tokens is not None:
            return self.tokens
        tokens: List[Token] = []
        line_no = 0
        for line_no, raw in enumerate(re.split(r"\r?\n", self.source), start=1):
            stripped = raw.strip()
            if not stripped or self._comment_re.match(stripped):
                continue
            leading = _LEADING_WS_RE.match(raw).group(0)
            width = len(leading.replace("\t", " " * TAB_WIDTH))
            self._track_indent(width, line_no, tokens)
            self._tokenize_line(raw, len(leading), line_no, tokens)
            tokens.append(Token(NEWLINE, line=line_no, col=len(raw.rstrip()) + 1))

        while len(self.indent_stack) > 1:
            self.indent_stack.pop()
            tokens.append(Token(DEDENT, line=line_no + 1, col=1))
        tokens.append(Token(EOF, line=line_no + 1, col=1))
        self.tokens = tokens
        return tokens

    def _track_indent(self, width: int, line_no: int, tokens: List[Token]):
        top = self.indent_stack[-1]
        if width > top:
            self.indent_stack.append(width)
            tokens.append(Token(INDENT, value=width, line=line_no, col=1))
            return
        while width < self.indent_stack[-1]:
            self.indent_stack.pop()
            tokens.append(Token(DEDENT, line=line_no, col=1))
        if width != self.indent_stack[-1]:
            raise LexError("Inconsistent dedent: indentation does not match any outer level",
                           line=line_no, col=width + 1)

    def _tokenize_line(self, line: str, start: int, line_no: int, tokens: List[Token]):
        pos = start
        end = len(line.rstrip())
        while pos < end:
            if self._comment_re.match(line, pos):
                return
            m = _TOKEN_RE.match(line, pos)
            if m is None:
                self._fail(line, pos, line_no)
            kind = m.lastgroup
            text = m.group(0)
            col = pos + 1
            pos = m.end()
            match kind:
                case "space":
                    continue
                case "boxed":
                    tokens.append(Token(BOXED_NUMBER, float(text[1:-1]), text, line_no, col))
                case "string":
                    tokens.append(Token(STRING, text[1:-1], text, line_no, col))
                case "objid":
                    tokens.append(Token(OBJECT_IDENTIFIER, text[1:-1], text, line_no, col))
                case "name":
                    if text in BOOLEAN_WORDS:
                        tokens.append(Token(BOOLEAN, BOOLEAN_WORDS[text], text, line_no, col))
                    else:
                        tokens.append(Token(IDENTIFIER, text, text, line_no, col))
                case "number":
                    tokens.append(Token(NUMBER, float(text), text, line_no, col))
                case _:
                    tokens.append(Token(SYMBOL, text, text, line_no, col))

    def _fail(self, line: str, pos: int, line_no: int):
        ch = line[pos]
        if ch == '"':
            raise LexError("Unterminated string literal", line=line_no, col=pos + 1)
        if ch == "#" and re.match(r"\#[A-Za-z_]", line[pos:]):
            raise LexError("Unterminated object identifier", line=line_no, col=pos + 1)
        raise LexError(f"Unexpected character {ch!r}", line=line_no, col=pos + 1)


def tokenize(source: str, *, comment_prefix: str = "--") -> List[Token]:
    return Lexer(source, comment_prefix=comment_prefix).tokenize()
