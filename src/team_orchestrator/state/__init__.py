"""State module - durable phase and dev session state."""

from .models import (
	BlockedAgent,
	BlockedState,
	DevSession,
	OrchestrationState,
	Phase,
	SessionStatus,
	WaitingFor,
)
from .store import StateManager, StateStore, is_valid_transition

__all__ = [
	"BlockedAgent",
	"BlockedState",
	"DevSession",
	"OrchestrationState",
	"Phase",
	"SessionStatus",
	"WaitingFor",
	"StateManager",
	"StateStore",
	"is_valid_transition",
]
