# File: reqlog/services/subscriptions.py
# Purpose: Attach verbose event handlers only while their output can be seen.
#
# The table of {group: active} is driven by the event logger's threshold. A
# pure planning step computes which groups flip; the apply step subscribes or
# unsubscribes their handlers on the event hub.

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Sequence, Tuple

from ..core.levels import level_value
from .events import Handler, ServerEvents

logger = logging.getLogger("reqlog.subscriptions")

Subscription = Tuple[str, Handler]


def plan_transitions(
    references: Mapping[str, float],
    value: float,
    previous: Optional[float],
) -> Dict[str, bool]:
    """
    Return {group: active} for every group whose active flag changes when the
    threshold moves from previous to value. previous=None means unknown
    (treated as inactive).
    """
    changes: Dict[str, bool] = {}
    for group, reference in references.items():
        active = reference >= value
        was_active = previous is not None and reference >= previous
        if active != was_active:
            changes[group] = active
    return changes


class SubscriptionManager:
    """Keeps per-group handler subscriptions in step with a logger threshold."""

    def __init__(self, events: ServerEvents, groups: Mapping[str, Sequence[Subscription]]):
        # Group names double as their reference level ("debug", "info")
        self.events = events
        self.groups = {group: tuple(subs) for group, subs in groups.items()}
        self.references = {group: level_value(group) for group in self.groups}
        self.active: Dict[str, bool] = {group: False for group in self.groups}

    def apply(self, changes: Mapping[str, bool]) -> None:
        for group, active in changes.items():
            for name, handler in self.groups[group]:
                if active:
                    self.events.on(name, handler)
                else:
                    self.events.remove_listener(name, handler)
            self.active[group] = active
            logger.debug("subscription group %s active=%s", group, active)

    def on_level_change(
        self,
        level: str,
        value: float,
        previous_level: Optional[str] = None,
        previous_value: Optional[float] = None,
    ) -> None:
        self.apply(plan_transitions(self.references, value, previous_value))
