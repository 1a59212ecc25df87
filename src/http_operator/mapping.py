"""Action to mapping resolution."""

from __future__ import annotations

import logging

from .models import DEFAULT_ACTION_METHODS, Action, Mapping, ResourceSpec

logger = logging.getLogger(__name__)


class NoMappingError(Exception):
    """Raised when a spec has no mapping for an action.

    Fatal for OBSERVE; mutating actions treat it as a no-op.
    """

    def __init__(self, action: Action) -> None:
        self.action = action
        super().__init__(f"no mapping found for action {action.value}")


def get_mapping(spec: ResourceSpec, action: Action) -> Mapping:
    """Resolve the mapping for an action.

    A mapping that names the action wins. Otherwise the first mapping
    without an action whose method is the action's default method is used
    (POST for CREATE, GET for OBSERVE, PUT for UPDATE, DELETE for DELETE).

    Raises:
        NoMappingError: If neither an explicit nor a fallback mapping exists.
    """
    for mapping in spec.mappings:
        if mapping.action is action:
            return mapping

    default_method = DEFAULT_ACTION_METHODS[action]
    for mapping in spec.mappings:
        if mapping.action is None and mapping.method == default_method:
            logger.debug(
                "Using method fallback mapping",
                extra={"action": action.value, "method": default_method},
            )
            return mapping

    raise NoMappingError(action)
