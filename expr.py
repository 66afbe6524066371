"""
Expression tokenizer for the simple debugger.

An ordered table of regular-expression rules is compiled once by
``init_regex()``; ``make_token()`` then splits an expression into tokens,
trying the rules in order at each position.  Evaluation is not done here.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import NamedTuple, Optional

log = logging.getLogger(__name__)

MAX_TOKENS = 32


class ExprError(Exception):
    pass


class TokenType(enum.Enum):
    NOTYPE = "notype"
    PLUS = "+"
    MINUS = "-"
    MUL = "*"
    DIV = "/"
    LPAREN = "("
    RPAREN = ")"
    EQ = "=="
    NEQ = "!="
    AND = "&&"
    HEX = "hex"
    NUM = "num"
    REG = "reg"


class Token(NamedTuple):
    type: TokenType
    text: str


# Order matters: the first rule matching at a position wins.
RULES = (
    (r" +", TokenType.NOTYPE),
    (r"0[xX][0-9a-fA-F]+", TokenType.HEX),
    (r"[0-9]+", TokenType.NUM),
    (r"\$[a-z0-9$]+", TokenType.REG),
    (r"\+", TokenType.PLUS),
    (r"-", TokenType.MINUS),
    (r"\*", TokenType.MUL),
    (r"/", TokenType.DIV),
    (r"\(", TokenType.LPAREN),
    (r"\)", TokenType.RPAREN),
    (r"==", TokenType.EQ),
    (r"!=", TokenType.NEQ),
    (r"&&", TokenType.AND),
)

_compiled: Optional[list[tuple[re.Pattern, TokenType]]] = None


def init_regex(rules=RULES):
    """Compile the token rules.  Must run before ``make_token``."""
    global _compiled
    compiled = []
    for pattern, ttype in rules:
        try:
            compiled.append((re.compile(pattern), ttype))
        except re.error as e:
            raise ExprError(f"regex compilation failed: {e}\n{pattern}") from e
    _compiled = compiled
    log.debug("compiled %d token rules", len(compiled))


def make_token(e: str) -> list[Token]:
    if _compiled is None:
        raise ExprError("token rules not compiled; call init_regex() first")

    tokens: list[Token] = []
    position = 0
    while position < len(e):
        for i, (regex, ttype) in enumerate(_compiled):
            m = regex.match(e, position)
            if m is None:
                continue
            text = m.group()
            log.debug('match rules[%d] = "%s" at position %d with len %d: %s',
                      i, regex.pattern, position, len(text), text)
            position = m.end()
            if ttype is TokenType.NOTYPE:
                break
            if len(tokens) >= MAX_TOKENS:
                raise ExprError(f"too many tokens (max {MAX_TOKENS})")
            tokens.append(Token(ttype, text))
            break
        else:
            raise ExprError(f"no match at position {position}\n"
                            f"{e}\n{' ' * position}^")
    return tokens
