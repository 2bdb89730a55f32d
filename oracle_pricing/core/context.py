"""
Application context shared by CLI commands.

The context is held in a ContextVar so each command invocation, including
the event loop it starts, sees the options given to the root command.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Options and loaded configuration for one CLI invocation."""

    config: Dict[str, Any] = field(default_factory=dict)
    config_dir: Optional[str] = None
    network: Optional[str] = None
    debug: bool = False
    verbose: bool = False
    command_stack: List[str] = field(default_factory=list)

    def push_command(self, command_name: str) -> None:
        self.command_stack.append(command_name)
        logger.debug(f"Command stack: {' -> '.join(self.command_stack)}")


_app_context: ContextVar[Optional[AppContext]] = ContextVar('app_context', default=None)


def get_current_context() -> AppContext:
    """Get the current application context, creating one if needed."""
    context = _app_context.get()
    if context is None:
        context = AppContext()
        _app_context.set(context)
    return context


def peek_context() -> Optional[AppContext]:
    """Get the current application context without creating one."""
    return _app_context.get()


def set_context(context: AppContext) -> None:
    """Set the application context."""
    _app_context.set(context)
