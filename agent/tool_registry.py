import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from agent.exceptions import ToolNotFoundError
from agent.models import ToolDeclaration

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class RegisteredTool:
    declaration: ToolDeclaration
    executor: ToolExecutor


class ToolRegistry:
    """
    Name-keyed registry of tool declarations and their executors.

    ``list()`` is exactly what goes into the ``tools`` parameter of each chat
    completions request. ``execute()`` never catches executor errors; the
    agent loop turns them into ``{"error": ...}`` tool messages.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(self, declaration: ToolDeclaration, executor: ToolExecutor) -> None:
        name = declaration.name
        if name in self._tools:
            logger.warning("Tool '%s' is already registered. Overwriting.", name)
        self._tools[name] = RegisteredTool(declaration, executor)

    def register_many(self, tools: Iterable[tuple[ToolDeclaration, ToolExecutor]]) -> None:
        for declaration, executor in tools:
            self.register(declaration, executor)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def list(self, names: Optional[Iterable[str]] = None) -> List[ToolDeclaration]:
        """Declarations in registration order, optionally restricted to *names*."""
        if names is None:
            return [t.declaration for t in self._tools.values()]
        wanted = set(names)
        return [t.declaration for name, t in self._tools.items() if name in wanted]

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        logger.info("Executing tool '%s' with args %s", name, args)
        result = tool.executor(args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
