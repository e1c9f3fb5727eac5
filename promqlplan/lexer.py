"""Tokenizer for the PromQL expression language and series descriptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterator, Optional, Union

__all__ = [
    "ItemType",
    "Item",
    "Lexer",
    "lex",
    "is_label",
    "KEYWORDS",
    "ITEM_TYPE_STR",
    "LINE_COMMENT",
]


class ItemType(IntEnum):
    """Token types produced by the lexer."""

    EQL = 57346
    BLANK = 57347
    COLON = 57348
    COMMA = 57349
    COMMENT = 57350
    DURATION = 57351
    EOF = 57352
    ERROR = 57353
    IDENTIFIER = 57354
    LEFT_BRACE = 57355
    LEFT_BRACKET = 57356
    LEFT_PAREN = 57357
    METRIC_IDENTIFIER = 57358
    NUMBER = 57359
    RIGHT_BRACE = 57360
    RIGHT_BRACKET = 57361
    RIGHT_PAREN = 57362
    SEMICOLON = 57363
    SPACE = 57364
    STRING = 57365
    TIMES = 57366
    OPERATORS_START = 57367
    ADD = 57368
    DIV = 57369
    EQLC = 57370
    EQL_REGEX = 57371
    GTE = 57372
    GTR = 57373
    LAND = 57374
    LOR = 57375
    LSS = 57376
    LTE = 57377
    LUNLESS = 57378
    MOD = 57379
    MUL = 57380
    NEQ = 57381
    NEQ_REGEX = 57382
    POW = 57383
    SUB = 57384
    AT = 57385
    ATAN2 = 57386
    OPERATORS_END = 57387
    AGGREGATORS_START = 57388
    AVG = 57389
    BOTTOMK = 57390
    COUNT = 57391
    COUNT_VALUES = 57392
    GROUP = 57393
    MAX = 57394
    MIN = 57395
    QUANTILE = 57396
    STDDEV = 57397
    STDVAR = 57398
    SUM = 57399
    TOPK = 57400
    AGGREGATORS_END = 57401
    KEYWORDS_START = 57402
    BOOL = 57403
    BY = 57404
    GROUP_LEFT = 57405
    GROUP_RIGHT = 57406
    IGNORING = 57407
    OFFSET = 57408
    ON = 57409
    WITHOUT = 57410
    KEYWORDS_END = 57411
    PREPROCESSOR_START = 57412
    START = 57413
    END = 57414
    PREPROCESSOR_END = 57415
    START_SYMBOLS_START = 57416
    START_METRIC = 57417
    START_SERIES_DESCRIPTION = 57418
    START_EXPRESSION = 57419
    START_METRIC_SELECTOR = 57420
    START_SYMBOLS_END = 57421

    def is_operator(self) -> bool:
        """True for arithmetic, comparison and set operators."""
        return ItemType.OPERATORS_START < self < ItemType.OPERATORS_END

    def is_aggregator(self) -> bool:
        """True for aggregation operators."""
        return ItemType.AGGREGATORS_START < self < ItemType.AGGREGATORS_END

    def is_aggregator_with_param(self) -> bool:
        """True for aggregators that take a parameter."""
        return self in (
            ItemType.TOPK,
            ItemType.BOTTOMK,
            ItemType.COUNT_VALUES,
            ItemType.QUANTILE,
        )

    def is_keyword(self) -> bool:
        """True for language keywords."""
        return ItemType.KEYWORDS_START < self < ItemType.KEYWORDS_END

    def is_comparison_operator(self) -> bool:
        """True for comparison operators."""
        return self in (
            ItemType.EQLC,
            ItemType.NEQ,
            ItemType.LTE,
            ItemType.LSS,
            ItemType.GTE,
            ItemType.GTR,
        )

    def is_set_operator(self) -> bool:
        """True for set operators."""
        return self in (ItemType.LAND, ItemType.LOR, ItemType.LUNLESS)

    def __str__(self) -> str:
        text = ITEM_TYPE_STR.get(self)
        if text is not None:
            return text
        return f"<Item {int(self)}>"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)

    def _desc(self) -> str:
        names = {
            ItemType.ERROR: "error",
            ItemType.EOF: "end of input",
            ItemType.COMMENT: "comment",
            ItemType.IDENTIFIER: "identifier",
            ItemType.METRIC_IDENTIFIER: "metric identifier",
            ItemType.STRING: "string",
            ItemType.NUMBER: "number",
            ItemType.DURATION: "duration",
        }
        if self in names:
            return names[self]
        return _quote_str(str(self))


_T = ItemType

KEYWORDS: dict[str, ItemType] = {
    "and": _T.LAND,
    "or": _T.LOR,
    "unless": _T.LUNLESS,
    "atan2": _T.ATAN2,
    "sum": _T.SUM,
    "avg": _T.AVG,
    "count": _T.COUNT,
    "min": _T.MIN,
    "max": _T.MAX,
    "group": _T.GROUP,
    "stddev": _T.STDDEV,
    "stdvar": _T.STDVAR,
    "topk": _T.TOPK,
    "bottomk": _T.BOTTOMK,
    "count_values": _T.COUNT_VALUES,
    "quantile": _T.QUANTILE,
    "offset": _T.OFFSET,
    "by": _T.BY,
    "without": _T.WITHOUT,
    "on": _T.ON,
    "ignoring": _T.IGNORING,
    "group_left": _T.GROUP_LEFT,
    "group_right": _T.GROUP_RIGHT,
    "bool": _T.BOOL,
    "start": _T.START,
    "end": _T.END,
}

ITEM_TYPE_STR: dict[ItemType, str] = {
    _T.LEFT_PAREN: "(",
    _T.RIGHT_PAREN: ")",
    _T.LEFT_BRACE: "{",
    _T.RIGHT_BRACE: "}",
    _T.LEFT_BRACKET: "[",
    _T.RIGHT_BRACKET: "]",
    _T.COMMA: ",",
    _T.EQL: "=",
    _T.COLON: ":",
    _T.SEMICOLON: ";",
    _T.BLANK: "_",
    _T.TIMES: "x",
    _T.SPACE: "<space>",
    _T.SUB: "-",
    _T.ADD: "+",
    _T.MUL: "*",
    _T.MOD: "%",
    _T.DIV: "/",
    _T.EQLC: "==",
    _T.NEQ: "!=",
    _T.LTE: "<=",
    _T.LSS: "<",
    _T.GTE: ">=",
    _T.GTR: ">",
    _T.EQL_REGEX: "=~",
    _T.NEQ_REGEX: "!~",
    _T.POW: "^",
}
ITEM_TYPE_STR.update({ty: word for word, ty in KEYWORDS.items()})

# Special numbers lex as NUMBER but have no string form of their own.
KEYWORDS["inf"] = _T.NUMBER
KEYWORDS["nan"] = _T.NUMBER

LINE_COMMENT = "#"

_REPLACEMENT_CHAR = "\ufffd"

_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
}


def _escape(ch: str, quote: str) -> str:
    if ch == quote:
        return "\\" + ch
    if ch in _ESCAPES:
        return _ESCAPES[ch]
    if ch.isprintable():
        return ch
    code = ord(ch)
    if code < 0x80:
        return f"\\x{code:02x}"
    if code <= 0xFFFF:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def _quote_str(s: str) -> str:
    return '"' + "".join(_escape(c, '"') for c in s) + '"'


def _quote_rune(r: Optional[str]) -> str:
    if r is None:
        r = _REPLACEMENT_CHAR
    return "'" + _escape(r, "'") + "'"


def _unicode_name(ch: str) -> str:
    text = f"U+{ord(ch):04X}"
    if ch.isprintable():
        text += f" '{ch}'"
    return text


@dataclass(frozen=True)
class Item:
    """A token: its type, starting position and text."""

    typ: ItemType
    pos: int
    val: str

    def __str__(self) -> str:
        typ = self.typ
        if typ == ItemType.EOF:
            return "EOF"
        if typ == ItemType.ERROR:
            return self.val
        if typ in (ItemType.IDENTIFIER, ItemType.METRIC_IDENTIFIER):
            return _quote_str(self.val)
        if typ.is_keyword():
            return f"<{self.val}>"
        if typ.is_operator():
            return f"<op:{self.val}>"
        if typ.is_aggregator():
            return f"<aggr:{self.val}>"
        if len(self.val) > 10:
            return _quote_str(self.val[:10]) + "..."
        return _quote_str(self.val)

    def _desc(self) -> str:
        if self.typ in ITEM_TYPE_STR:
            return str(self)
        if self.typ == ItemType.EOF:
            return self.typ._desc()
        return f"{self.typ._desc()} {self}"


def _is_space(r: Optional[str]) -> bool:
    return r in (" ", "\t", "\n", "\r")


def _is_end_of_line(r: Optional[str]) -> bool:
    return r in ("\r", "\n")


def _is_digit(r: Optional[str]) -> bool:
    return r is not None and "0" <= r <= "9"


def _is_alpha(r: Optional[str]) -> bool:
    return r is not None and (r == "_" or "a" <= r <= "z" or "A" <= r <= "Z")


def _is_alphanumeric(r: Optional[str]) -> bool:
    return _is_alpha(r) or _is_digit(r)


def _digit_val(ch: Optional[str]) -> int:
    if ch is None:
        return 16
    if "0" <= ch <= "9":
        return ord(ch) - ord("0")
    if "a" <= ch <= "f":
        return ord(ch) - ord("a") + 10
    if "A" <= ch <= "F":
        return ord(ch) - ord("A") + 10
    return 16


def is_label(s: str) -> bool:
    """Report whether ``s`` can be used as a label name."""
    if not s or not _is_alpha(s[0]):
        return False
    return all(_is_alphanumeric(c) for c in s[1:])


_State = Optional[Callable[[], "_State"]]

_SIMPLE_TOKENS = {
    ",": _T.COMMA,
    "*": _T.MUL,
    "/": _T.DIV,
    "%": _T.MOD,
    "+": _T.ADD,
    "-": _T.SUB,
    "^": _T.POW,
    "@": _T.AT,
}


class Lexer:
    """State-machine scanner; positions are character offsets in the input.

    Bytes input is decoded as UTF-8 with invalid sequences replaced by U+FFFD,
    which the string states report as an invalid rune.
    """

    def __init__(self, text: Union[str, bytes], series_desc: bool = False) -> None:
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        self.input: str = text
        self.series_desc = series_desc
        self._state: _State = self._lex_statements
        self._pos = 0
        self._start = 0
        self._width = 0
        self.last_pos = 0
        self._item: Optional[Item] = None

        self._paren_depth = 0
        self._brace_open = False
        self._bracket_open = False
        self._got_colon = False
        self._string_open = ""

    @property
    def done(self) -> bool:
        """True once the scanner has no further state to run."""
        return self._state is None

    def next_item(self) -> Item:
        """Scan and return the next token."""
        self._item = None
        if self._state is not None:
            while self._item is None:
                self._state = self._state()
        else:
            self._emit(ItemType.EOF)
        assert self._item is not None
        self.last_pos = self._item.pos
        return self._item

    def __iter__(self) -> Iterator[Item]:
        while self._state is not None:
            yield self.next_item()

    # Primitive operations.

    def _next(self) -> Optional[str]:
        if self._pos >= len(self.input):
            self._width = 0
            return None
        r = self.input[self._pos]
        self._width = 1
        self._pos += 1
        return r

    def _peek(self) -> Optional[str]:
        r = self._next()
        self._backup()
        return r

    def _backup(self) -> None:
        self._pos -= self._width

    def _emit(self, typ: ItemType) -> None:
        self._item = Item(typ, self._start, self.input[self._start:self._pos])
        self._start = self._pos

    def _ignore(self) -> None:
        self._start = self._pos

    def _accept(self, valid: str) -> bool:
        r = self._next()
        if r is not None and r in valid:
            return True
        self._backup()
        return False

    def _accept_run(self, valid: str) -> None:
        while self._accept(valid):
            pass

    def _errorf(self, message: str) -> _State:
        self._item = Item(ItemType.ERROR, self._start, message)
        return None

    def _skip_spaces(self) -> None:
        while _is_space(self._peek()):
            self._next()
        self._ignore()

    # States.

    def _lex_statements(self) -> _State:
        if self._brace_open:
            return self._lex_inside_braces
        if self.input.startswith(LINE_COMMENT, self._pos):
            return self._lex_line_comment

        r = self._next()
        if r is None:
            if self._paren_depth != 0:
                return self._errorf("unclosed left parenthesis")
            if self._bracket_open:
                return self._errorf("unclosed left bracket")
            self._emit(ItemType.EOF)
            return None
        if r in _SIMPLE_TOKENS:
            self._emit(_SIMPLE_TOKENS[r])
        elif _is_space(r):
            return self._lex_space
        elif r == "=":
            t = self._peek()
            if t == "=":
                self._next()
                self._emit(ItemType.EQLC)
            elif t == "~":
                return self._errorf(f"unexpected character after '=': {_quote_rune(t)}")
            else:
                self._emit(ItemType.EQL)
        elif r == "!":
            t = self._next()
            if t == "=":
                self._emit(ItemType.NEQ)
            else:
                return self._errorf(f"unexpected character after '!': {_quote_rune(t)}")
        elif r == "<":
            if self._peek() == "=":
                self._next()
                self._emit(ItemType.LTE)
            else:
                self._emit(ItemType.LSS)
        elif r == ">":
            if self._peek() == "=":
                self._next()
                self._emit(ItemType.GTE)
            else:
                self._emit(ItemType.GTR)
        elif _is_digit(r) or (r == "." and _is_digit(self._peek())):
            self._backup()
            return self._lex_number_or_duration
        elif r in ('"', "'"):
            self._string_open = r
            return self._lex_string
        elif r == "`":
            self._string_open = r
            return self._lex_raw_string
        elif _is_alpha(r) or r == ":":
            if not self._bracket_open:
                self._backup()
                return self._lex_keyword_or_identifier
            if self._got_colon:
                return self._errorf(f"unexpected colon {_quote_rune(r)}")
            self._emit(ItemType.COLON)
            self._got_colon = True
        elif r == "(":
            self._emit(ItemType.LEFT_PAREN)
            self._paren_depth += 1
            return self._lex_statements
        elif r == ")":
            self._emit(ItemType.RIGHT_PAREN)
            self._paren_depth -= 1
            if self._paren_depth < 0:
                return self._errorf(f"unexpected right parenthesis {_quote_rune(r)}")
            return self._lex_statements
        elif r == "{":
            self._emit(ItemType.LEFT_BRACE)
            self._brace_open = True
            return self._lex_inside_braces
        elif r == "[":
            if self._bracket_open:
                return self._errorf(f"unexpected left bracket {_quote_rune(r)}")
            self._got_colon = False
            self._emit(ItemType.LEFT_BRACKET)
            if _is_space(self._peek()):
                self._skip_spaces()
            self._bracket_open = True
            return self._lex_duration
        elif r == "]":
            if not self._bracket_open:
                return self._errorf(f"unexpected right bracket {_quote_rune(r)}")
            self._emit(ItemType.RIGHT_BRACKET)
            self._bracket_open = False
        else:
            return self._errorf(f"unexpected character: {_quote_rune(r)}")
        return self._lex_statements

    def _lex_inside_braces(self) -> _State:
        if self.input.startswith(LINE_COMMENT, self._pos):
            return self._lex_line_comment

        r = self._next()
        if r is None:
            return self._errorf("unexpected end of input inside braces")
        if _is_space(r):
            return self._lex_space
        if _is_alpha(r):
            self._backup()
            return self._lex_identifier
        if r == ",":
            self._emit(ItemType.COMMA)
        elif r in ('"', "'"):
            self._string_open = r
            return self._lex_string
        elif r == "`":
            self._string_open = r
            return self._lex_raw_string
        elif r == "=":
            if self._next() == "~":
                self._emit(ItemType.EQL_REGEX)
            else:
                self._backup()
                self._emit(ItemType.EQL)
        elif r == "!":
            nr = self._next()
            if nr == "~":
                self._emit(ItemType.NEQ_REGEX)
            elif nr == "=":
                self._emit(ItemType.NEQ)
            else:
                return self._errorf(
                    f"unexpected character after '!' inside braces: {_quote_rune(nr)}"
                )
        elif r == "{":
            return self._errorf(f"unexpected left brace {_quote_rune(r)}")
        elif r == "}":
            self._emit(ItemType.RIGHT_BRACE)
            self._brace_open = False
            if self.series_desc:
                return self._lex_value_sequence
            return self._lex_statements
        else:
            return self._errorf(f"unexpected character inside braces: {_quote_rune(r)}")
        return self._lex_inside_braces

    def _lex_value_sequence(self) -> _State:
        r = self._next()
        if r is None:
            return self._lex_statements
        if _is_space(r):
            self._emit(ItemType.SPACE)
            self._lex_space()
        elif r == "+":
            self._emit(ItemType.ADD)
        elif r == "-":
            self._emit(ItemType.SUB)
        elif r == "x":
            self._emit(ItemType.TIMES)
        elif r == "_":
            self._emit(ItemType.BLANK)
        elif _is_digit(r) or (r == "." and _is_digit(self._peek())):
            self._backup()
            self._lex_number()
        elif _is_alpha(r):
            self._backup()
            # Invalid items lexed here are left for the parser to reject.
            return self._lex_keyword_or_identifier
        else:
            return self._errorf(
                f"unexpected character in series sequence: {_quote_rune(r)}"
            )
        return self._lex_value_sequence

    def _lex_escape(self) -> _State:
        ch = self._next()
        if ch is not None and (ch in "abfnrtv\\" or ch == self._string_open):
            return self._lex_string
        if ch is not None and ch in "01234567":
            n, base, limit = 3, 8, 255
        elif ch == "x":
            ch = self._next()
            n, base, limit = 2, 16, 255
        elif ch == "u":
            ch = self._next()
            n, base, limit = 4, 16, 0x10FFFF
        elif ch == "U":
            ch = self._next()
            n, base, limit = 8, 16, 0x10FFFF
        elif ch is None:
            self._errorf("escape sequence not terminated")
            return self._lex_string
        else:
            self._errorf(f"unknown escape sequence {_unicode_name(ch)}")
            return self._lex_string

        x = 0
        while n > 0:
            d = _digit_val(ch)
            if d >= base:
                if ch is None:
                    self._errorf("escape sequence not terminated")
                    return self._lex_string
                self._errorf(f"illegal character {_unicode_name(ch)} in escape sequence")
                return self._lex_string
            x = x * base + d
            n -= 1
            if n > 0:
                ch = self._next()

        if x > limit or 0xD800 <= x < 0xE000:
            self._errorf("escape sequence is an invalid Unicode code point")
        return self._lex_string

    def _lex_string(self) -> _State:
        while True:
            r = self._next()
            if r == "\\":
                return self._lex_escape
            if r == _REPLACEMENT_CHAR:
                self._errorf("invalid UTF-8 rune")
                return self._lex_string
            if r is None or r == "\n":
                return self._errorf("unterminated quoted string")
            if r == self._string_open:
                break
        self._emit(ItemType.STRING)
        return self._lex_statements

    def _lex_raw_string(self) -> _State:
        while True:
            r = self._next()
            if r == _REPLACEMENT_CHAR:
                self._errorf("invalid UTF-8 rune")
                return self._lex_raw_string
            if r is None:
                self._errorf("unterminated raw string")
                return self._lex_raw_string
            if r == self._string_open:
                break
        self._emit(ItemType.STRING)
        return self._lex_statements

    def _lex_space(self) -> _State:
        while _is_space(self._peek()):
            self._next()
        self._ignore()
        return self._lex_statements

    def _lex_line_comment(self) -> _State:
        self._pos += len(LINE_COMMENT)
        r = self._next()
        while not _is_end_of_line(r) and r is not None:
            r = self._next()
        self._backup()
        self._emit(ItemType.COMMENT)
        return self._lex_statements

    def _lex_duration(self) -> _State:
        if self._scan_number():
            return self._errorf("missing unit character in duration")
        if not self._accept_remaining_duration():
            text = self.input[self._start:self._pos]
            return self._errorf(f"bad duration syntax: {_quote_str(text)}")
        self._backup()
        self._emit(ItemType.DURATION)
        return self._lex_statements

    def _lex_number(self) -> _State:
        if not self._scan_number():
            text = self.input[self._start:self._pos]
            return self._errorf(f"bad number syntax: {_quote_str(text)}")
        self._emit(ItemType.NUMBER)
        return self._lex_statements

    def _lex_number_or_duration(self) -> _State:
        if self._scan_number():
            self._emit(ItemType.NUMBER)
            return self._lex_statements
        if self._accept_remaining_duration():
            self._backup()
            self._emit(ItemType.DURATION)
            return self._lex_statements
        text = self.input[self._start:self._pos]
        return self._errorf(f"bad number or duration syntax: {_quote_str(text)}")

    def _accept_remaining_duration(self) -> bool:
        if not self._accept("smhdwy"):
            return False
        # Accept "ms"; bad units such as "hs" are caught when the duration is parsed.
        self._accept("s")
        while self._accept("0123456789"):
            while self._accept("0123456789"):
                pass
            # "y" may only come first in a duration.
            if not self._accept("smhdw"):
                return False
            self._accept("s")
        return not _is_alphanumeric(self._next())

    def _scan_number(self) -> bool:
        digits = "0123456789"
        # Hexadecimal is ambiguous in series descriptions.
        if not self.series_desc and self._accept("0") and self._accept("xX"):
            digits = "0123456789abcdefABCDEF"
        self._accept_run(digits)
        if self._accept("."):
            self._accept_run(digits)
        if self._accept("eE"):
            self._accept("+-")
            self._accept_run("0123456789")
        r = self._peek()
        return (self.series_desc and r == "x") or not _is_alphanumeric(r)

    def _lex_identifier(self) -> _State:
        while _is_alphanumeric(self._next()):
            pass
        self._backup()
        self._emit(ItemType.IDENTIFIER)
        return self._lex_statements

    def _lex_keyword_or_identifier(self) -> _State:
        while True:
            r = self._next()
            if _is_alphanumeric(r) or r == ":":
                continue
            self._backup()
            word = self.input[self._start:self._pos]
            keyword = KEYWORDS.get(word.lower())
            if keyword is not None:
                self._emit(keyword)
            elif ":" not in word:
                self._emit(ItemType.IDENTIFIER)
            else:
                self._emit(ItemType.METRIC_IDENTIFIER)
            break
        if self.series_desc and self._peek() != "{":
            return self._lex_value_sequence
        return self._lex_statements


def lex(text: Union[str, bytes], series_desc: bool = False) -> Lexer:
    """Create a lexer over ``text``."""
    return Lexer(text, series_desc)