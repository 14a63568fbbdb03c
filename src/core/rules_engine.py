"""Rule compilation and matching logic (core domain).

Two tables share the ``RoutingRule`` shape:

- the generic rule table, evaluated by ``match_rules`` in declaration order;
- the label routing table, evaluated by ``route_labels`` and ordered by
  priority so the loudest alert for an event goes out first.

Both run for every event, so one event commonly yields several
notifications (e.g. a generic "PR opened" alert plus a security alert).
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional, Tuple

from core.models import (
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    Event,
    RoutingRule,
)

PRIORITY_RANK = {
    PRIORITY_CRITICAL: 4,
    PRIORITY_HIGH: 3,
    PRIORITY_NORMAL: 2,
    PRIORITY_LOW: 1,
}


def _label_set(values: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if values is None:
        return None
    return frozenset(value.lower() for value in values)


def _name_set(values: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if values is None:
        return None
    return frozenset(values)


def build_rules(rules_config: Iterable[dict]) -> List[RoutingRule]:
    """Normalize rule configs into immutable ``RoutingRule`` values.

    Each config entry names one ``event_type``; ``event_types`` is accepted
    as a shorthand and expands into one rule per type, keeping declaration
    order. Disabled rules are kept so the table stays an exact mirror of the
    configuration; the matchers skip them.
    """

    compiled: List[RoutingRule] = []
    for rule in rules_config:
        priority = rule.get("priority", PRIORITY_NORMAL)
        if priority not in PRIORITY_RANK:
            raise ValueError(f"Unsupported rule priority: {priority}")

        event_types = rule.get("event_types") or [rule["event_type"]]
        for event_type in event_types:
            compiled.append(
                RoutingRule(
                    event_type=event_type,
                    target_channels=tuple(rule.get("channels", [])),
                    template_id=rule["template"],
                    label_match=_label_set(rule.get("labels")),
                    exclude_labels=_label_set(rule.get("exclude_labels")),
                    author_match=_name_set(rule.get("authors")),
                    priority=priority,
                    enabled=bool(rule.get("enabled", True)),
                )
            )
    return compiled


def _lowered(labels: Iterable[str]) -> FrozenSet[str]:
    return frozenset(label.lower() for label in labels)


def match_rules(event_type: str, event: Event, rules: Iterable[RoutingRule]) -> List[RoutingRule]:
    """Return the generic rules that apply to ``event``, in declaration order.

    Matching logic:
    - The rule must be enabled and its event type must equal ``event_type``.
    - With ``label_match``, any one event label is enough (OR semantics).
    - With ``author_match``, the event author must be listed.
    """

    labels = _lowered(event.labels)
    matches: List[RoutingRule] = []
    for rule in rules:
        if not rule.enabled or rule.event_type != event_type:
            continue
        if rule.label_match is not None and not (rule.label_match & labels):
            continue
        if rule.author_match is not None and event.author not in rule.author_match:
            continue
        matches.append(rule)
    return matches


def route_labels(event: Event, event_type: str, rules: Iterable[RoutingRule]) -> List[Tuple[RoutingRule, str]]:
    """Return label-routed rules with their priority, loudest first.

    A rule qualifies when at least one of its labels is on the event and none
    of its excluded labels is. ``sorted`` is stable, so rules of equal
    priority keep their table order from run to run.
    """

    labels = _lowered(event.labels)
    matches: List[Tuple[RoutingRule, str]] = []
    for rule in rules:
        if not rule.enabled or rule.event_type != event_type:
            continue
        if not rule.label_match or not (rule.label_match & labels):
            continue
        if rule.exclude_labels and rule.exclude_labels & labels:
            continue
        if rule.author_match is not None and event.author not in rule.author_match:
            continue
        matches.append((rule, rule.priority))

    return sorted(matches, key=lambda item: PRIORITY_RANK[item[1]], reverse=True)
