"""
State Store - durable phase and session state.

Features:
- Pure transition functions that return a new OrchestrationState
- Crash-safe writes (temp file + rename), lastUpdated stamped on every save
- StateManager that persists after each successful mutation
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..atomic import atomic_write_text
from ..errors import InvalidTransitionError, StateError
from .models import (
	BlockedAgent,
	BlockedState,
	DevSession,
	OrchestrationState,
	Phase,
	SessionStatus,
	WaitingFor,
	utc_now,
)

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[Phase, tuple[Phase, ...]] = {
	Phase.INIT: (Phase.PO_CONVERSATION,),
	Phase.PO_CONVERSATION: (Phase.TECH_LEAD_DESIGN,),
	Phase.TECH_LEAD_DESIGN: (Phase.DEV_SESSIONS,),
	Phase.DEV_SESSIONS: (Phase.COMPLETED,),
	Phase.COMPLETED: (),
}


def create_initial_state() -> OrchestrationState:
	"""Fresh state at the init phase."""
	return OrchestrationState()


def is_valid_transition(from_phase: Phase, to_phase: Phase) -> bool:
	"""True iff to_phase is the unique successor of from_phase."""
	return Phase(to_phase) in VALID_TRANSITIONS[Phase(from_phase)]


def _touch(state: OrchestrationState, **updates) -> OrchestrationState:
	return state.model_copy(update={**updates, "last_updated": utc_now()})


def transition_phase(state: OrchestrationState, new_phase: Phase) -> OrchestrationState:
	"""
	Move to the next phase.

	Raises:
		InvalidTransitionError: If new_phase is not the successor of state.phase
	"""
	if not is_valid_transition(state.phase, new_phase):
		allowed = ", ".join(p.value for p in VALID_TRANSITIONS[state.phase]) or "none"
		raise InvalidTransitionError(
			f"Invalid phase transition: {state.phase.value} -> {Phase(new_phase).value}. "
			f"Valid transitions from {state.phase.value}: {allowed}"
		)
	return _touch(state, phase=Phase(new_phase))


def set_blocked(
	state: OrchestrationState,
	blocked_agent: BlockedAgent,
	question_file: str,
	waiting_for: WaitingFor,
) -> OrchestrationState:
	"""Record that an agent is waiting on a question."""
	if blocked_agent is None or not question_file or waiting_for is None:
		raise StateError("Blocked state requires an agent, a question file and a recipient")
	blocked = BlockedState(
		is_blocked=True,
		blocked_agent=BlockedAgent(blocked_agent),
		question_file=str(question_file),
		waiting_for=WaitingFor(waiting_for),
	)
	return _touch(state, blocked=blocked)


def clear_blocked(state: OrchestrationState) -> OrchestrationState:
	"""Reset all four blocked fields together."""
	return _touch(state, blocked=BlockedState())


def set_current_agent(state: OrchestrationState, agent: Optional[str]) -> OrchestrationState:
	return _touch(state, current_agent=agent)


def add_dev_session(state: OrchestrationState, area: str, tickets: list[int]) -> OrchestrationState:
	"""
	Add a pending session for an area.

	Raises:
		StateError: If the area already has a session or tickets is empty
	"""
	if state.get_session(area) is not None:
		raise StateError(f'Dev session for area "{area}" already exists')
	if not tickets:
		raise StateError(f'Dev session for area "{area}" needs at least one ticket')
	session = DevSession(area=area, tickets=list(tickets), status=SessionStatus.PENDING)
	return _touch(state, dev_sessions=[*state.dev_sessions, session])


def update_dev_session(
	state: OrchestrationState,
	area: str,
	status: Optional[SessionStatus] = None,
	tickets: Optional[list[int]] = None,
) -> OrchestrationState:
	"""
	Update status and/or tickets of an existing session.

	Raises:
		StateError: If no session exists for the area, or tickets is empty
	"""
	if state.get_session(area) is None:
		raise StateError(f'Dev session for area "{area}" not found')
	if tickets is not None and not tickets:
		raise StateError(f'Dev session for area "{area}" needs at least one ticket')

	updates: dict = {}
	if status is not None:
		updates["status"] = SessionStatus(status)
	if tickets is not None:
		updates["tickets"] = list(tickets)

	sessions = [
		s.model_copy(update=updates) if s.area == area else s
		for s in state.dev_sessions
	]
	return _touch(state, dev_sessions=sessions)


def remove_dev_session(state: OrchestrationState, area: str) -> OrchestrationState:
	"""
	Remove a session.

	Raises:
		StateError: If no session exists for the area
	"""
	if state.get_session(area) is None:
		raise StateError(f'Dev session for area "{area}" not found')
	return _touch(state, dev_sessions=[s for s in state.dev_sessions if s.area != area])


class StateStore:
	"""Reads and writes state.json."""

	def __init__(self, state_file: Path):
		self.state_file = Path(state_file)

	def load(self) -> Optional[OrchestrationState]:
		"""
		Load persisted state.

		Returns:
			The state, or None if there is no prior state. An unparseable
			file is moved aside and also yields None.
		"""
		if not self.state_file.exists():
			return None

		try:
			content = self.state_file.read_text(encoding="utf-8")
			return OrchestrationState.model_validate(json.loads(content))
		except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
			stamp = datetime.now().strftime("%Y%m%d%H%M%S")
			aside = self.state_file.with_name(f"{self.state_file.name}.corrupt-{stamp}")
			self.state_file.replace(aside)
			logger.error(f"Unreadable state file moved to {aside}: {e}")
			return None

	def save(self, state: OrchestrationState) -> OrchestrationState:
		"""Persist state atomically, stamping lastUpdated. Returns the saved state."""
		stamped = state.model_copy(update={"last_updated": utc_now()})
		atomic_write_text(self.state_file, stamped.to_json())
		return stamped


class StateManager:
	"""
	Owns the in-memory OrchestrationState and persists every mutation.

	Each operation computes a new state first and only swaps it in after
	the write succeeded, so disk never holds a half-applied transition.

	Usage:
		manager = StateManager(StateStore(config.state_file))
		manager.transition_to(Phase.PO_CONVERSATION)
	"""

	def __init__(self, store: StateStore, state: Optional[OrchestrationState] = None):
		self.store = store
		self._state = state or store.load() or create_initial_state()

	@property
	def state(self) -> OrchestrationState:
		return self._state

	@property
	def phase(self) -> Phase:
		return self._state.phase

	def is_blocked(self) -> bool:
		return self._state.is_blocked

	def is_complete(self) -> bool:
		return self._state.is_complete

	def _commit(self, new_state: OrchestrationState) -> None:
		self._state = self.store.save(new_state)

	def save(self) -> None:
		self._commit(self._state)

	def transition_to(self, new_phase: Phase) -> None:
		self._commit(transition_phase(self._state, new_phase))
		logger.info(f"Phase is now {self._state.phase.value}")

	def set_blocked(
		self,
		blocked_agent: BlockedAgent,
		question_file: str,
		waiting_for: WaitingFor,
	) -> None:
		self._commit(set_blocked(self._state, blocked_agent, question_file, waiting_for))

	def clear_blocked(self) -> None:
		self._commit(clear_blocked(self._state))

	def set_current_agent(self, agent: Optional[str]) -> None:
		self._commit(set_current_agent(self._state, agent))

	def add_dev_session(self, area: str, tickets: list[int]) -> None:
		self._commit(add_dev_session(self._state, area, tickets))

	def update_dev_session(
		self,
		area: str,
		status: Optional[SessionStatus] = None,
		tickets: Optional[list[int]] = None,
	) -> None:
		self._commit(update_dev_session(self._state, area, status=status, tickets=tickets))

	def remove_dev_session(self, area: str) -> None:
		self._commit(remove_dev_session(self._state, area))

	def get_dev_session(self, area: str) -> Optional[DevSession]:
		return self._state.get_session(area)

	def get_dev_sessions_by_status(self, status: SessionStatus) -> list[DevSession]:
		return self._state.sessions_with_status(status)
