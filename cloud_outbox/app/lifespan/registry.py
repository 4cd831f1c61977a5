"""Lifecycle registry for managing startup and shutdown ordering.

Hooks register by name with a startup order and the hooks they require.
Startup runs in dependency order; shutdown runs the hooks that actually
started, in reverse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class LifecycleHook:
    """A startup or shutdown hook with metadata."""

    name: str
    func: Callable[..., Awaitable[None]]
    startup_order: int
    requires: list[str] = field(default_factory=list)
    started: bool = False

    async def execute(self, **kwargs: Any) -> None:
        await self.func(**kwargs)
        self.started = True


class LifecycleRegistry:
    """Registry for application lifecycle hooks.

    Example:
        registry = LifecycleRegistry()

        @registry.register(name="database", startup_order=10, requires=["core"])
        async def startup_database(db_settings: PostgresSettings, **kwargs: object) -> None:
            await init_database()

        @registry.register(name="database")
        async def shutdown_database(**kwargs: object) -> None:
            await close_database()

        await registry.startup(**all_settings)
        await registry.shutdown(**all_settings)
    """

    def __init__(self) -> None:
        self._startup_hooks: dict[str, LifecycleHook] = {}
        self._shutdown_hooks: dict[str, LifecycleHook] = {}

    def register(
        self,
        name: str,
        startup_order: int = 50,
        requires: list[str] | None = None,
    ) -> Callable[[Callable[..., Awaitable[None]]], Callable[..., Awaitable[None]]]:
        """Register a lifecycle hook.

        Functions named ``shutdown_*`` register as shutdown hooks, anything
        else as a startup hook; pairs share ``name``.

        Raises:
            ValueError: If a hook of the same kind and name is already registered.
        """

        def decorator(func: Callable[..., Awaitable[None]]) -> Callable[..., Awaitable[None]]:
            hooks = self._shutdown_hooks if func.__name__.startswith("shutdown") else self._startup_hooks
            if name in hooks:
                msg = f"Hook '{name}' already registered"
                raise ValueError(msg)
            hooks[name] = LifecycleHook(
                name=name,
                func=func,
                startup_order=startup_order,
                requires=list(requires or []),
            )
            return func

        return decorator

    def startup_order(self) -> list[str]:
        """Hook names in execution order.

        Lower ``startup_order`` first, but never before a required hook.

        Raises:
            ValueError: On a missing or circular requirement.
        """
        for hook in self._startup_hooks.values():
            for dep in hook.requires:
                if dep not in self._startup_hooks:
                    msg = f"Hook '{hook.name}' requires '{dep}' but it's not registered"
                    raise ValueError(msg)

        ordered: list[str] = []
        remaining = sorted(self._startup_hooks.values(), key=lambda h: (h.startup_order, h.name))
        while remaining:
            ready = [h for h in remaining if all(dep in ordered for dep in h.requires)]
            if not ready:
                names = ", ".join(h.name for h in remaining)
                msg = f"Circular dependency between hooks: {names}"
                raise ValueError(msg)
            ordered.append(ready[0].name)
            remaining.remove(ready[0])
        return ordered

    async def startup(self, **kwargs: Any) -> None:
        """Execute all startup hooks in dependency order."""
        for name in self.startup_order():
            hook = self._startup_hooks[name]
            logger.debug("Starting %s...", name)
            try:
                await hook.execute(**kwargs)
            except Exception:
                logger.exception("Failed to start %s", name)
                raise
            logger.debug("Started %s", name)

    async def shutdown(self, **kwargs: Any) -> None:
        """Execute shutdown hooks of started components in reverse order.

        A failing hook is logged and the remaining hooks still run.
        """
        started = [name for name in reversed(self.startup_order()) if self._startup_hooks[name].started]
        for name in started:
            self._startup_hooks[name].started = False
            hook = self._shutdown_hooks.get(name)
            if hook is None:
                continue
            logger.debug("Shutting down %s...", name)
            try:
                await hook.execute(**kwargs)
            except Exception:
                logger.exception("Failed to shut down %s", name)
            else:
                logger.debug("Shut down %s", name)


lifespan_registry = LifecycleRegistry()

__all__ = ["LifecycleHook", "LifecycleRegistry", "lifespan_registry"]
