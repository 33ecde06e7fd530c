"""
Orchestrator module - Runs agent processes and drives the workflow phases.

Components:
- AgentSupervisor: Spawns and terminates agent processes
- AgentRoles: What the PO, tech lead and developers are given
- SessionScheduler: Fan-out/fan-in of developer sessions
- Orchestrator: The phase loop, blocking questions and resume
- OrchestratorLock: One driver per project
"""

from .process import AgentHandle, AgentOutcome, AgentStatus, AgentSupervisor, IOMode
from .roles import AgentRoles
from .scheduler import DevAgentResult, SessionInput, SessionScheduler
from .driver import OrchestrationResult, Orchestrator
from .lock import OrchestratorLock

__all__ = [
	"AgentHandle",
	"AgentOutcome",
	"AgentStatus",
	"AgentSupervisor",
	"IOMode",
	"AgentRoles",
	"DevAgentResult",
	"SessionInput",
	"SessionScheduler",
	"OrchestrationResult",
	"Orchestrator",
	"OrchestratorLock",
]
