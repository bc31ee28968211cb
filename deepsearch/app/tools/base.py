"""Tool abstraction exposed to the agent loop."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from pydantic import BaseModel, ValidationError

from deepsearch.app.exceptions import ToolArgumentsError, ToolExecutionError


@dataclass(frozen=True)
class Tool:
    """A named capability the model can call.

    Attributes:
        name: Name the model uses to call the tool
        description: Description shown to the model
        parameters: Pydantic model the raw arguments are validated against
        execute: Coroutine function receiving the validated arguments
    """

    name: str
    description: str
    parameters: type[BaseModel]
    execute: Callable[[Any], Awaitable[Any]]

    def to_openai(self) -> Dict[str, Any]:
        """Describe the tool in the OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.model_json_schema(),
            },
        }

    async def run(self, raw_args: Dict[str, Any]) -> Any:
        """Validate ``raw_args`` and execute the tool.

        Raises:
            ToolArgumentsError: If the arguments fail schema validation.
            ToolExecutionError: If execution raises.
        """
        try:
            args = self.parameters.model_validate(raw_args)
        except ValidationError as e:
            raise ToolArgumentsError(self.name, str(e)) from e

        try:
            return await self.execute(args)
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(self.name, str(e) or type(e).__name__) from e
