"""Custom routing rule management.

Rules are matched top to bottom and the first match wins. Built-in rules
lead the table; custom rules follow in insertion order. On an EDGE node the
catch-all that forwards everything upstream is held apart from the rest of
the table and always rendered last, so a custom rule can never land behind
it.
"""

from __future__ import annotations

from typing import Iterable

from xcp.config.document import LEGAL_OUTBOUNDS, ConfigDocument
from xcp.models import MatchKind, RoutingRule, RuleKind
from xcp.utils.exceptions import (
    InvalidIndexError,
    InvalidInputError,
    InvalidOutboundError,
    NoCustomRulesError,
)
from xcp.utils.logging_config import get_logger

logger = get_logger(__name__)


def parse_values(raw: str | Iterable[str]) -> tuple[str, ...]:
    """Split a comma-separated value list, trimming each entry.

    Raises:
        InvalidInputError: an entry is empty after trimming, or there are none

    """
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    values = tuple(item.strip() for item in items)
    if not values or any(not value for value in values):
        msg = f"Rule values must be a non-empty list of non-empty strings: {raw!r}"
        raise InvalidInputError(msg)
    return values


class RoutingRuleEngine:
    """Lists, adds and removes custom routing rules."""

    @staticmethod
    def list(doc: ConfigDocument) -> tuple[RoutingRule, ...]:
        """Return custom rules in insertion order."""
        return doc.custom_rules

    @staticmethod
    def legal_outbounds(doc: ConfigDocument) -> tuple[str, ...]:
        """Outbound tags a custom rule may target for the document's role."""
        return LEGAL_OUTBOUNDS[doc.role]

    @classmethod
    def add(
        cls,
        doc: ConfigDocument,
        outbound_tag: str,
        match: MatchKind | str,
        values: str | Iterable[str],
    ) -> ConfigDocument:
        """Return a document with a custom rule at the end of the custom region.

        Raises:
            InvalidOutboundError: ``outbound_tag`` is not legal for the role
            InvalidInputError: unknown match kind or empty values

        """
        legal = cls.legal_outbounds(doc)
        if outbound_tag not in legal:
            msg = (
                f"Outbound {outbound_tag!r} is not valid for a {doc.role.value} node "
                f"(choose from {', '.join(legal)})"
            )
            raise InvalidOutboundError(msg)
        try:
            match = MatchKind(match)
        except ValueError as e:
            msg = f"Unknown match kind {match!r} (choose domain or ip)"
            raise InvalidInputError(msg) from e

        rule = RoutingRule(
            kind=RuleKind.CUSTOM,
            outbound_tag=outbound_tag,
            match=match,
            values=parse_values(values),
        )
        logger.debug("Adding %s rule -> %s: %s", match.value, outbound_tag, rule.values)
        return doc.evolve(routing=doc.routing.with_custom_rule(rule))

    @staticmethod
    def remove(doc: ConfigDocument, index: int) -> ConfigDocument:
        """Return a document without the ``index``-th custom rule (1-based).

        Raises:
            NoCustomRulesError: there are no custom rules
            InvalidIndexError: ``index`` is outside ``[1, count]``

        """
        count = len(doc.custom_rules)
        if count == 0:
            msg = "There are no custom routing rules to remove"
            raise NoCustomRulesError(msg)
        if isinstance(index, bool) or not isinstance(index, int) or not 1 <= index <= count:
            msg = f"Rule index {index!r} is out of range (1-{count})"
            raise InvalidIndexError(msg)

        logger.debug("Removing custom rule %d of %d", index, count)
        return doc.evolve(routing=doc.routing.without_custom_rule(index - 1))
