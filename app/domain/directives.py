"""
Parser for the inline order commands the model writes into its prose:

    ORDER_ADD:<item name>|QUANTITY:<n>
    ORDER_REMOVE:<item name>
    ORDER_UPDATE:<item name>|QUANTITY:<n>

Keywords are case-insensitive. The scanner walks the text once, tries the
grammar rule for each keyword it meets and records the span of every
directive that parses. A keyword whose rule fails (an ORDER_ADD with no
QUANTITY, an empty name) is left in the text as-is.

The returned directives are ordered ADD, then REMOVE, then UPDATE, keeping
textual order inside each group, so where a command sits in the reply has
no effect on the final cart.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple


class DirectiveAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"


PROCESSING_ORDER = (DirectiveAction.ADD, DirectiveAction.REMOVE, DirectiveAction.UPDATE)

_KEYWORD_RE = re.compile(r"ORDER_(ADD|REMOVE|UPDATE):", re.IGNORECASE)
_QUANTITY_RE = re.compile(r"[ \t]*\|[ \t]*QUANTITY:[ \t]*(\d+)", re.IGNORECASE)

_NAME_STOPS = frozenset("|\r\n")
# A REMOVE has no suffix, so its name also ends at sentence punctuation.
_REMOVE_NAME_STOPS = _NAME_STOPS | frozenset(".,!?;")


@dataclass(frozen=True)
class Directive:
    action: DirectiveAction
    item_name: str
    quantity: Optional[int] = None
    start: int = 0
    end: int = 0


@dataclass
class DirectiveParse:
    directives: List[Directive] = field(default_factory=list)
    # Source text with every directive span cut out; not trimmed.
    text: str = ""


def _scan_name(source: str, start: int, stops: frozenset) -> Tuple[str, int]:
    """Read a name from `start` up to a stop character or the next keyword."""
    next_keyword = _KEYWORD_RE.search(source, start)
    limit = next_keyword.start() if next_keyword else len(source)
    pos = start
    while pos < limit and source[pos] not in stops:
        pos += 1
    return source[start:pos], pos


def _longest_known_prefix(name: str, known_names: Iterable[str]) -> Optional[str]:
    lowered = name.lower()
    best = None
    for known in known_names:
        k = known.lower()
        if not lowered.startswith(k):
            continue
        rest = lowered[len(k):]
        if rest and rest[0].isalnum():
            continue
        if best is None or len(k) > len(best):
            best = name[:len(k)]
    return best


def _parse_at(source: str, keyword: "re.Match", known_names: Optional[List[str]]) -> Optional[Directive]:
    action = DirectiveAction(keyword.group(1).lower())
    name_start = keyword.end()

    if action is DirectiveAction.REMOVE:
        raw, _ = _scan_name(source, name_start, _REMOVE_NAME_STOPS)
        name = raw.strip()
        if known_names:
            name = _longest_known_prefix(name, known_names) or name
        if not name:
            return None
        leading = len(raw) - len(raw.lstrip())
        end = name_start + leading + len(name)
        return Directive(action, name, None, keyword.start(), end)

    raw, name_end = _scan_name(source, name_start, _NAME_STOPS)
    name = raw.strip()
    if not name:
        return None
    qty = _QUANTITY_RE.match(source, name_end)
    if not qty:
        return None
    return Directive(action, name, int(qty.group(1)), keyword.start(), qty.end())


def parse_directives(text: str, known_names: Optional[Iterable[str]] = None) -> DirectiveParse:
    """
    Extract order directives from model output.

    `known_names` (menu item names) lets a REMOVE stop at the end of the
    dish name even when prose follows on the same line.
    """
    source = text or ""
    names = list(known_names) if known_names else None

    found: List[Directive] = []
    pos = 0
    while True:
        keyword = _KEYWORD_RE.search(source, pos)
        if not keyword:
            break
        directive = _parse_at(source, keyword, names)
        if directive is None:
            pos = keyword.end()
            continue
        found.append(directive)
        pos = directive.end

    pieces = []
    cursor = 0
    for d in found:
        pieces.append(source[cursor:d.start])
        cursor = d.end
    pieces.append(source[cursor:])

    ordered = sorted(found, key=lambda d: PROCESSING_ORDER.index(d.action))
    return DirectiveParse(directives=ordered, text="".join(pieces))


def strip_directives(text: str, known_names: Optional[Iterable[str]] = None) -> str:
    return parse_directives(text, known_names).text
