"""Tool definition schema for retrieval tools.

Definitions convert to the OpenAI function-calling format so the same
tools can be offered to a response model, and validate arguments before a
handler runs.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


class ValidationError(Exception):
    """Raised when tool argument validation fails."""
    pass


_PYTHON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolParameter:
    """Definition of a single tool parameter.

    Attributes:
        type: JSON type (string, integer, number, boolean, array, object)
        description: Human-readable description
        required: Whether the parameter is required (default True)
        default: Default value if not provided
        items_type: For array types, the type of array items
    """
    type: str
    description: str
    required: bool = True
    default: Any = None
    items_type: Optional[str] = None


@dataclass
class ToolDefinition:
    """A named tool with typed parameters and an execution timeout.

    Attributes:
        timeout: Seconds a single invocation may run
    """
    name: str
    description: str
    parameters: dict[str, ToolParameter] = field(default_factory=dict)
    timeout: float = 30.0

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to the OpenAI ``tools`` entry format."""
        properties = {}
        required = []

        for param_name, param in self.parameters.items():
            prop: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.type == "array" and param.items_type:
                prop["items"] = {"type": param.items_type}
            if param.default is not None:
                prop["default"] = param.default
            properties[param_name] = prop

            if param.required:
                required.append(param_name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def validate_args(self, args: dict[str, Any]) -> None:
        """Validate arguments against the tool schema.

        Unknown arguments are ignored; None is accepted for optional ones.

        Raises:
            ValidationError: If validation fails
        """
        for param_name, param in self.parameters.items():
            if param.required and args.get(param_name) is None:
                raise ValidationError(f"Missing required parameter: {param_name}")

        for arg_name, arg_value in args.items():
            param = self.parameters.get(arg_name)
            if param is None or arg_value is None:
                continue

            expected = _PYTHON_TYPES.get(param.type)
            if expected is None:
                continue
            # bool is an int subclass but never a valid number here
            if isinstance(arg_value, bool) and param.type != "boolean":
                raise ValidationError(f"Expected {param.type} for {arg_name}, got bool")
            if not isinstance(arg_value, expected):
                raise ValidationError(
                    f"Expected {param.type} for {arg_name}, got {type(arg_value).__name__}"
                )
            if param.type == "array" and param.items_type in _PYTHON_TYPES:
                item_types = _PYTHON_TYPES[param.items_type]
                if not all(isinstance(item, item_types) for item in arg_value):
                    raise ValidationError(f"Expected array of {param.items_type} for {arg_name}")
