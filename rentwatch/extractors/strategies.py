# rentwatch/extractors/strategies.py

"""Ordered fallback strategies for pulling one field out of a listing node.

A field is resolved by a :class:`StrategyChain`: each strategy gets the
node and its whitespace-normalised text, and the first one returning a
non-empty string wins.  Strategies never raise for ordinary markup
noise; a broken CSS selector is logged once and treated as "no match".
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from bs4 import Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger("rentwatch.extractors")

Strategy = Callable[[Tag, str], str]

_WS_RE = re.compile(r"\s+")

_bad_selectors: set[str] = set()


def clean_text(raw: str | None) -> str:
    """Collapse runs of whitespace and trim."""
    if not raw:
        return ""
    return _WS_RE.sub(" ", raw).strip()


def node_text(node: Tag | None) -> str:
    """Return the visible text of *node* with normalised whitespace."""
    if node is None:
        return ""
    return clean_text(node.get_text(" ", strip=True))


def safe_select_one(node: Tag, selector: str) -> Tag | None:
    """``select_one`` that treats an invalid selector as no match."""
    try:
        return node.select_one(selector)
    except SelectorSyntaxError:
        if selector not in _bad_selectors:
            _bad_selectors.add(selector)
            logger.warning("Ignoring invalid selector: %r", selector)
        return None


def safe_select(node: Tag, selector: str) -> list[Tag]:
    """``select`` that treats an invalid selector as no match."""
    try:
        return list(node.select(selector))
    except SelectorSyntaxError:
        if selector not in _bad_selectors:
            _bad_selectors.add(selector)
            logger.warning("Ignoring invalid selector: %r", selector)
        return []


# ── Strategy builders ───────────────────────────────


def selector_text(selector: str) -> Strategy:
    """Text of the first descendant matching *selector*."""

    def strategy(node: Tag, _text: str) -> str:
        return node_text(safe_select_one(node, selector))

    return strategy


def selector_attr(selector: str, *attrs: str) -> Strategy:
    """First non-empty attribute among *attrs* on the first match."""

    def strategy(node: Tag, _text: str) -> str:
        el = safe_select_one(node, selector)
        if el is None:
            return ""
        for attr in attrs:
            value = el.get(attr)
            if value:
                return clean_text(str(value))
        return ""

    return strategy


def regex_text(
    pattern: re.Pattern[str],
    template: str = "{0}",
) -> Strategy:
    """Format the first regex match of the node text with *template*.

    ``{0}`` is the whole match, ``{1}``… the groups.
    """

    def strategy(_node: Tag, text: str) -> str:
        m = pattern.search(text)
        if not m:
            return ""
        return clean_text(template.format(m.group(0), *m.groups()))

    return strategy


def selector_regex(
    selectors: Iterable[str],
    pattern: re.Pattern[str],
) -> Strategy:
    """Match *pattern* against the text of each selector's subnode in turn.

    Returns the first capture group of the first subnode that matches.
    """
    ordered = tuple(selectors)

    def strategy(node: Tag, _text: str) -> str:
        for sel in ordered:
            m = pattern.search(node_text(safe_select_one(node, sel)))
            if m:
                return m.group(1)
        return ""

    return strategy


@dataclass(frozen=True)
class StrategyChain:
    """Chain of responsibility over a field's strategies."""

    field: str
    strategies: tuple[Strategy, ...]

    def resolve(self, node: Tag, text: str) -> str:
        """Return the first non-empty strategy result, or ``""``."""
        for strategy in self.strategies:
            value = strategy(node, text)
            if value:
                return value
        return ""
