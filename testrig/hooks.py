"""
Pipeline hooks.

A simple callback-based system for observing a pipeline run (phase
changes, dependency health, installation, tier results) without coupling
the pipeline to any reporting or notification backend.
"""

import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class HookEvent(Enum):
    """Event types emitted by the pipeline."""

    # Run lifecycle
    RUN_START = "run_start"
    RUN_END = "run_end"
    PHASE_CHANGE = "phase_change"

    # Dependencies
    DEPENDENCY_STARTED = "dependency_started"
    DEPENDENCY_STOPPED = "dependency_stopped"
    GATE_PASSED = "gate_passed"

    # Installation
    INSTALL_START = "install_start"
    INSTALL_END = "install_end"

    # Tiers
    TIER_START = "tier_start"
    TIER_END = "tier_end"

    TEARDOWN_WARNING = "teardown_warning"


@dataclass
class HookContext:
    """
    Context information passed to hooks.

    Only the fields relevant to the event are set; anything else is in data.
    """

    event: HookEvent
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    # Event-specific fields (optional)
    phase: str | None = None
    dependency: str | None = None
    tier: str | None = None
    status: str | None = None
    duration: float | None = None
    error: BaseException | None = None


_FIELDS = ("phase", "dependency", "tier", "status", "duration", "error")

HookCallback = Callable[[HookContext], None]


class PipelineHooks:
    """
    Callback registry for pipeline events.

    Example:
        hooks = PipelineHooks()

        @hooks.on(HookEvent.TIER_END)
        def notify(ctx: HookContext):
            lg.info("tier done", extra={"tier": ctx.tier, "failed": ctx.data["failed"]})

        pipeline = Pipeline(lg, dependencies, installer, tiers, hooks=hooks)
    """

    def __init__(self) -> None:
        self._hooks: dict[HookEvent, list[HookCallback]] = {}
        self._global_hooks: list[HookCallback] = []
        self._enabled: bool = True

    def register(self, event: HookEvent, callback: HookCallback) -> None:
        """
        Register a callback for a specific event.

        Args:
            event: Event type to listen for
            callback: Callback function that receives HookContext
        """
        self._hooks.setdefault(event, []).append(callback)

    def on(self, event: HookEvent) -> Callable[[HookCallback], HookCallback]:
        """Decorator form of register()."""

        def decorator(callback: HookCallback) -> HookCallback:
            self.register(event, callback)
            return callback

        return decorator

    def register_global(self, callback: HookCallback) -> None:
        """Register a callback that receives every event."""
        self._global_hooks.append(callback)

    def unregister(self, event: HookEvent, callback: HookCallback) -> bool:
        """
        Unregister a callback for a specific event.

        Returns:
            bool: True if callback was found and removed
        """
        if callback in self._hooks.get(event, []):
            self._hooks[event].remove(callback)
            return True
        return False

    def clear(self, event: HookEvent | None = None) -> None:
        """Clear callbacks for one event, or all of them."""
        if event is None:
            self._hooks.clear()
            self._global_hooks.clear()
        elif event in self._hooks:
            self._hooks[event].clear()

    def trigger(self, event: HookEvent, **kwargs: Any) -> HookContext | None:
        """
        Trigger all callbacks registered for an event.

        Keyword arguments matching a HookContext field are set on the
        context; the rest go into data. A callback raising an exception
        never interrupts the pipeline.

        Returns:
            The context passed to callbacks, or None when disabled
        """
        if not self._enabled:
            return None

        fields = {k: kwargs.pop(k) for k in _FIELDS if k in kwargs}
        context = HookContext(event=event, data=kwargs, **fields)

        for callback in [*self._hooks.get(event, []), *self._global_hooks]:
            try:
                callback(context)
            except Exception as e:
                sys.stderr.write(f"Error in pipeline hook for {event.value}: {e}\n")
        return context

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def has_callbacks(self, event: HookEvent) -> bool:
        return bool(self._hooks.get(event)) or bool(self._global_hooks)
