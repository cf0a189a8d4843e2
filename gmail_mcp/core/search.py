"""
Search criteria for IMAP listing and searching.

A query is an ordered list of tokens combined with logical AND. Each token is
either a Flag (a keyword with no argument, e.g. UNSEEN) or a Match (a keyword
with one string argument, e.g. FROM "someone@example.com"). OR and NOT are
not exposed.

Example:
    >>> tokens = parse_criteria(["UNSEEN", "FROM", "boss@example.com"])
    >>> to_imap_args(tokens)
    ['UNSEEN', 'FROM', '"boss@example.com"']
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Sequence, Union

from gmail_mcp.utils.errors import ValidationError


FLAG_KEYWORDS = frozenset({
    "ALL", "ANSWERED", "DELETED", "DRAFT", "FLAGGED", "NEW", "OLD", "RECENT",
    "SEEN", "UNANSWERED", "UNDELETED", "UNDRAFT", "UNFLAGGED", "UNSEEN",
})
TEXT_KEYWORDS = frozenset({"BCC", "BODY", "CC", "FROM", "SUBJECT", "TEXT", "TO"})
DATE_KEYWORDS = frozenset({"BEFORE", "ON", "SINCE", "SENTBEFORE", "SENTON", "SENTSINCE"})
SIZE_KEYWORDS = frozenset({"LARGER", "SMALLER"})
MATCH_KEYWORDS = TEXT_KEYWORDS | DATE_KEYWORDS | SIZE_KEYWORDS

# IMAP dates always use English month names, whatever the process locale.
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_DATE_PATTERN = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{4})$")


@dataclass(frozen=True)
class Flag:
    """Zero-argument search predicate, e.g. ALL or UNSEEN."""
    keyword: str

    def __post_init__(self):
        keyword = self.keyword.upper()
        if keyword not in FLAG_KEYWORDS:
            raise ValidationError(f"unknown search keyword '{self.keyword}'", "criteria")
        object.__setattr__(self, "keyword", keyword)


@dataclass(frozen=True)
class Match:
    """Search predicate with one argument, e.g. FROM or SINCE."""
    keyword: str
    value: str

    def __post_init__(self):
        keyword = self.keyword.upper()
        if keyword not in MATCH_KEYWORDS:
            raise ValidationError(f"unknown search keyword '{self.keyword}'", "criteria")
        value = str(self.value)
        if keyword in DATE_KEYWORDS:
            value = _normalize_date(keyword, value)
        elif keyword in SIZE_KEYWORDS:
            if not value.isdigit():
                raise ValidationError(f"{keyword} expects a size in bytes, got '{value}'", "criteria")
        elif not value.isascii():
            raise ValidationError(f"{keyword} value must be ASCII text", "criteria")
        object.__setattr__(self, "keyword", keyword)
        object.__setattr__(self, "value", value)


SearchToken = Union[Flag, Match]

ALL_MESSAGES: List[SearchToken] = [Flag("ALL")]


def format_imap_date(value: Union[date, datetime]) -> str:
    """Format a date as DD-MMM-YYYY (e.g. 05-Mar-2024)."""
    return f"{value.day:02d}-{MONTHS[value.month - 1]}-{value.year:04d}"


def _normalize_date(keyword: str, value: str) -> str:
    match = _DATE_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f"{keyword} expects a date like 01-Jan-2024, got '{value}'", "criteria")
    day, month, year = match.groups()
    month = month.capitalize()
    if month not in MONTHS:
        raise ValidationError(f"{keyword} has an unknown month '{month}'", "criteria")
    try:
        parsed = date(int(year), MONTHS.index(month) + 1, int(day))
    except ValueError as e:
        raise ValidationError(f"{keyword} has an invalid date '{value}': {e}", "criteria")
    return format_imap_date(parsed)


def parse_criteria(raw: Union[Sequence[Any], None]) -> List[SearchToken]:
    """
    Build a token list from loose tool input.

    Accepts a flat list where a keyword needing an argument consumes the next
    item (["UNSEEN", "FROM", "a@b.c"]), nested [keyword, value] pairs
    (["UNSEEN", ["SINCE", "01-Jan-2024"]]), single-keyword lists (["SEEN"]),
    or already-built Flag/Match tokens.

    Raises:
        ValidationError: On unknown keywords, missing arguments or bad values.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]

    tokens: List[SearchToken] = []
    items = list(raw)
    i = 0
    while i < len(items):
        item = items[i]
        i += 1

        if isinstance(item, (Flag, Match)):
            tokens.append(item)
            continue

        if isinstance(item, (list, tuple)):
            if len(item) == 1:
                tokens.append(_flag(item[0]))
            elif len(item) == 2:
                tokens.append(_match(item[0], item[1]))
            else:
                raise ValidationError(f"criteria entry {list(item)!r} must have one or two items", "criteria")
            continue

        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"invalid criteria entry {item!r}", "criteria")

        keyword = item.strip().upper()
        if keyword in MATCH_KEYWORDS:
            if i >= len(items) or not isinstance(items[i], (str, int)):
                raise ValidationError(f"{keyword} requires a value", "criteria")
            tokens.append(_match(keyword, items[i]))
            i += 1
        else:
            tokens.append(_flag(keyword))

    return tokens


def _flag(keyword: Any) -> Flag:
    if not isinstance(keyword, str):
        raise ValidationError(f"invalid criteria keyword {keyword!r}", "criteria")
    if keyword.strip().upper() in MATCH_KEYWORDS:
        raise ValidationError(f"{keyword.strip().upper()} requires a value", "criteria")
    return Flag(keyword.strip())


def _match(keyword: Any, value: Any) -> Match:
    if not isinstance(keyword, str):
        raise ValidationError(f"invalid criteria keyword {keyword!r}", "criteria")
    if keyword.strip().upper() in FLAG_KEYWORDS:
        raise ValidationError(f"{keyword.strip().upper()} does not take a value", "criteria")
    return Match(keyword.strip(), str(value))


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def to_imap_args(tokens: Iterable[SearchToken]) -> List[str]:
    """Render tokens as arguments for an IMAP UID SEARCH command."""
    args: List[str] = []
    for token in tokens:
        if isinstance(token, Flag):
            args.append(token.keyword)
        elif token.keyword in TEXT_KEYWORDS:
            args.extend([token.keyword, _quote(token.value)])
        else:
            args.extend([token.keyword, token.value])
    return args
