"""
State Models - Pydantic schemas for the persisted orchestration state.

Field names are snake_case in Python and camelCase on disk
(`isBlocked`, `devSessions`, ...), matching the state.json format.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


def utc_now() -> str:
	"""ISO-8601 timestamp used for lastUpdated."""
	return datetime.now(timezone.utc).isoformat()


class Phase(str, Enum):
	"""Workflow phase, in order."""
	INIT = "init"
	PO_CONVERSATION = "po_conversation"
	TECH_LEAD_DESIGN = "tech_lead_design"
	DEV_SESSIONS = "dev_sessions"
	COMPLETED = "completed"


class SessionStatus(str, Enum):
	"""Status of a developer session."""
	PENDING = "pending"
	RUNNING = "running"
	BLOCKED = "blocked"
	COMPLETED = "completed"


class BlockedAgent(str, Enum):
	"""Role of the agent waiting on a question."""
	PO = "po"
	TECH_LEAD = "tech_lead"
	DEV = "dev"


class WaitingFor(str, Enum):
	"""Who is expected to answer the pending question."""
	USER = "user"
	PO = "po"
	TECH_LEAD = "tech_lead"


class _CamelModel(BaseModel):
	model_config = ConfigDict(populate_by_name=True, frozen=True)


class BlockedState(_CamelModel):
	"""Blocked tuple. is_blocked is true iff the other three fields are set."""
	is_blocked: bool = Field(default=False, alias="isBlocked")
	blocked_agent: Optional[BlockedAgent] = Field(default=None, alias="blockedAgent")
	question_file: Optional[str] = Field(default=None, alias="questionFile")
	waiting_for: Optional[WaitingFor] = Field(default=None, alias="waitingFor")

	@model_validator(mode="before")
	@classmethod
	def _normalize(cls, data: Any) -> Any:
		if not isinstance(data, dict):
			return data
		is_blocked = data.get("is_blocked", data.get("isBlocked", False))
		fields = [
			data.get(name, data.get(alias))
			for name, alias in (
				("blocked_agent", "blockedAgent"),
				("question_file", "questionFile"),
				("waiting_for", "waitingFor"),
			)
		]
		if is_blocked and all(f is not None for f in fields):
			return data
		if not is_blocked and all(f is None for f in fields):
			return data
		# A half-set tuple on disk loads as unblocked
		return {}


class DevSession(_CamelModel):
	"""One unit of parallel developer work, keyed by area."""
	area: str
	tickets: list[int]
	status: SessionStatus = SessionStatus.PENDING


class OrchestrationState(_CamelModel):
	"""Root aggregate persisted to state.json."""
	phase: Phase = Phase.INIT
	blocked: BlockedState = Field(default_factory=BlockedState)
	dev_sessions: list[DevSession] = Field(default_factory=list, alias="devSessions")
	current_agent: Optional[str] = Field(default=None, alias="currentAgent")
	last_updated: str = Field(default_factory=utc_now, alias="lastUpdated")

	@model_validator(mode="before")
	@classmethod
	def _unique_sessions(cls, data: Any) -> Any:
		"""Keep the first session per area and drop sessions without tickets."""
		if not isinstance(data, dict):
			return data
		key = "devSessions" if "devSessions" in data else "dev_sessions"
		sessions = data.get(key)
		if not isinstance(sessions, list):
			return data

		kept = []
		seen = set()
		for session in sessions:
			if isinstance(session, DevSession):
				area, tickets = session.area, session.tickets
			elif isinstance(session, dict) and isinstance(session.get("area"), str):
				area, tickets = session.get("area"), session.get("tickets")
			else:
				kept.append(session)
				continue
			if area in seen:
				logger.warning(f"Dropping duplicate dev session for area {area}")
				continue
			if isinstance(tickets, list) and not tickets:
				logger.warning(f"Dropping dev session for area {area} without tickets")
				continue
			seen.add(area)
			kept.append(session)

		if len(kept) == len(sessions):
			return data
		return {**data, key: kept}

	@property
	def is_blocked(self) -> bool:
		return self.blocked.is_blocked

	@property
	def is_complete(self) -> bool:
		return self.phase == Phase.COMPLETED

	def get_session(self, area: str) -> Optional[DevSession]:
		"""Get a dev session by area."""
		for session in self.dev_sessions:
			if session.area == area:
				return session
		return None

	def sessions_with_status(self, status: SessionStatus) -> list[DevSession]:
		"""All dev sessions with the given status, in insertion order."""
		return [s for s in self.dev_sessions if s.status == status]

	def to_json(self) -> str:
		return self.model_dump_json(by_alias=True, indent=2)
