"""Handler registry — maps node type tags to handler factories."""

from __future__ import annotations

import logging
from typing import Callable

from flowengine.compiler import ir
from flowengine.runtime.node_handlers import (
    ApiRequestHandler,
    LogHandler,
    LoopHandler,
    NodeHandler,
    NoopHandler,
    ReusableHandler,
    RunReusableHandler,
    SetVariableHandler,
    SwitchHandler,
    ValueHandler,
    WaitHandler,
)
from flowengine.utils.type_converter import PropertyDataType

logger = logging.getLogger("flowengine.registry.handlers")

HandlerFactory = Callable[[], NodeHandler]


class HandlerRegistry:
    """Type tag → factory.  Handlers are built on first lookup and cached."""

    def __init__(self, factories: dict[str, HandlerFactory] | None = None):
        self._factories: dict[str, HandlerFactory] = dict(factories or {})
        self._instances: dict[str, NodeHandler] = {}

    def register(self, type_tag: str, factory: HandlerFactory) -> None:
        if type_tag in self._factories:
            logger.debug("Replacing handler for node type %s", type_tag)
        self._factories[type_tag] = factory
        self._instances.pop(type_tag, None)

    def unregister(self, type_tag: str) -> None:
        self._factories.pop(type_tag, None)
        self._instances.pop(type_tag, None)

    def get(self, type_tag: str) -> NodeHandler | None:
        if type_tag in self._instances:
            return self._instances[type_tag]
        factory = self._factories.get(type_tag)
        if factory is None:
            return None
        handler = factory()
        self._instances[type_tag] = handler
        return handler

    def has(self, type_tag: str) -> bool:
        return type_tag in self._factories

    def types(self) -> list[str]:
        return sorted(self._factories)

    def copy(self) -> "HandlerRegistry":
        return HandlerRegistry(self._factories)


def default_registry() -> HandlerRegistry:
    """Registry preloaded with the built-in node handlers."""
    return HandlerRegistry({
        ir.NODE_START: NoopHandler,
        ir.NODE_REUSABLE: ReusableHandler,
        ir.NODE_REUSABLE_END: NoopHandler,
        ir.NODE_RUN_REUSABLE: RunReusableHandler,
        ir.NODE_LOOP: LoopHandler,
        ir.NODE_SWITCH: SwitchHandler,
        ir.NODE_INT_VALUE: lambda: ValueHandler(PropertyDataType.INT),
        ir.NODE_STRING_VALUE: lambda: ValueHandler(PropertyDataType.STRING),
        ir.NODE_BOOLEAN_VALUE: lambda: ValueHandler(PropertyDataType.BOOLEAN),
        ir.NODE_INPUT_VALUE: ValueHandler,
        ir.NODE_SET_VARIABLE: SetVariableHandler,
        ir.NODE_LOG: LogHandler,
        ir.NODE_WAIT: WaitHandler,
        ir.NODE_API_REQUEST: ApiRequestHandler,
    })
