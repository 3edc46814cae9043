"""
Application layer - Application services and use cases.

Contains:
- Charge orchestrator
- POS facade
- Command handlers
"""

from .charge_orchestrator import ActiveCharge, ChargeOrchestrator
from .api_facade import PointOfSaleFacade
from .command_handler import CommandHandler, CommandResponse


__all__ = [
    "ActiveCharge",
    "ChargeOrchestrator",
    "PointOfSaleFacade",
    "CommandHandler",
    "CommandResponse",
]
