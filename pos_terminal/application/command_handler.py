"""
Command Handler - Routes Redis commands to API methods.

Provides command routing with argument validation and error handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pos_terminal.core.exceptions import PosTerminalError
from pos_terminal.loggers import logger


# Type alias for command handlers
CommandHandlerFunc = Callable[..., Awaitable[dict[str, Any]]]


@dataclass
class CommandResponse:
    """
    Standardized response for command execution.

    Attributes:
        command_id: The ID of the executed command.
        success: Whether the command succeeded.
        message: Human-readable message.
        data: Optional response data.
    """

    command_id: Optional[Any] = None
    success: bool = False
    message: Optional[str] = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the response to a dictionary."""
        return {
            "command_id": self.command_id,
            "success": self.success,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class CommandDefinition:
    """
    Definition of a command.

    Attributes:
        name: Command name.
        handler: Handler function.
        required_args: List of required argument names.
        description: Human-readable description.
    """

    name: str
    handler: CommandHandlerFunc
    required_args: list[str]
    description: str = ""


class CommandHandler:
    """
    Routes commands to their handlers on the POS facade.
    """

    def __init__(self, api: Any) -> None:
        """
        Initialize the command handler.

        Args:
            api: The PointOfSaleFacade instance.
        """
        self._api = api
        self._commands: dict[str, CommandDefinition] = {}
        self._register_default_commands()

    def _register_default_commands(self) -> None:
        """Register all default command handlers."""
        # Input
        self.register(
            "select_category",
            self._api.select_category,
            ["category"],
            "Select the sale category",
        )
        self.register(
            "set_amount",
            self._api.set_amount,
            ["amount_cents"],
            "Set the amount in cents",
        )
        self.register(
            "set_art_number",
            self._api.set_art_number,
            ["art_number"],
            "Set the art catalogue number",
        )

        # Navigation
        self.register("go_next", self._api.go_next, [], "Advance one step")
        self.register("go_back", self._api.go_back, [], "Go back one step")
        self.register("charge", self._api.charge, [], "Charge the current selection")
        self.register(
            "reset_state_for_new_transaction",
            self._api.reset_state_for_new_transaction,
            [],
            "Clear the sale and start over",
        )

        # Queries
        self.register("get_state", self._api.get_state, [], "Get the transaction state")
        self.register(
            "get_pending_intent",
            self._api.get_pending_intent,
            [],
            "Get the intent awaiting verification",
        )

    def register(
        self,
        command_name: str,
        handler: CommandHandlerFunc,
        required_args: list[str],
        description: str = "",
    ) -> None:
        """
        Register a command handler.

        Args:
            command_name: The name of the command.
            handler: The async handler function.
            required_args: List of required argument names.
            description: Human-readable description.
        """
        self._commands[command_name] = CommandDefinition(
            name=command_name,
            handler=handler,
            required_args=required_args,
            description=description,
        )

    def get_available_commands(self) -> list[dict[str, Any]]:
        """Get list of available commands with their descriptions."""
        return [
            {
                "name": cmd.name,
                "required_args": cmd.required_args,
                "description": cmd.description,
            }
            for cmd in self._commands.values()
        ]

    async def execute(self, command_data: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a command based on command data.

        Args:
            command_data: Dictionary containing 'command', 'command_id', and 'data'.

        Returns:
            Response dictionary with execution result.
        """
        command = command_data.get("command")
        command_id = command_data.get("command_id")
        data = command_data.get("data", {}) or {}

        response = CommandResponse(command_id=command_id)

        if command not in self._commands:
            logger.warning(f"Unknown command: {command}")
            response.message = f"Unknown command: {command}"
            return response.to_dict()

        definition = self._commands[command]
        kwargs = {arg: data.get(arg) for arg in definition.required_args}

        missing = [arg for arg in definition.required_args if kwargs.get(arg) is None]
        if missing:
            response.message = f"Missing required arguments: {missing}"
            return response.to_dict()

        try:
            result = await definition.handler(**kwargs)
        except PosTerminalError as e:
            logger.warning(f"Command '{command}' rejected: {e.message}")
            response.message = e.message
            response.data = e.to_dict()
            return response.to_dict()
        except Exception as e:
            logger.error(f"Error executing command '{command}': {e}")
            response.message = f"Error: {e}"
            return response.to_dict()

        if isinstance(result, dict):
            response.success = result.get("success", False)
            response.message = result.get("message")
            response.data = result.get("data")
        else:
            response.success = True
            response.data = result

        return response.to_dict()
