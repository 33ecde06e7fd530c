"""
Session Scheduler - Fan-out/fan-in execution of developer sessions.

Spawns one developer agent per area, either all at once or one after the
other, and classifies each outcome. Results come back in input order no
matter which process finishes first. The scheduler never touches
orchestration state; the caller applies status changes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..errors import AgentSpawnError
from ..questions.models import Routing
from ..questions.store import QuestionStore
from .process import AgentHandle, AgentOutcome, AgentStatus, AgentSupervisor
from .roles import AgentRoles, DevInvocation, write_transcript

logger = logging.getLogger(__name__)


@dataclass
class SessionInput:
	"""One area's work for a batch."""
	area: str
	tickets: list[int] = field(default_factory=list)


@dataclass
class DevAgentResult:
	"""Classified outcome of one developer session."""
	area: str
	status: AgentStatus
	outcome: Optional[AgentOutcome] = None
	question_file: Optional[str] = None
	needs_tech_lead: bool = False
	error: Optional[str] = None


@dataclass
class DevSessionHandle:
	"""A spawned developer session."""
	area: str
	tickets: list[int]
	agent_handle: AgentHandle


class SessionScheduler:
	"""
	Runs developer sessions through the process supervisor.

	Usage:
		scheduler = SessionScheduler(roles, supervisor, questions)
		results = await scheduler.run([SessionInput("frontend", [1, 3])])
	"""

	def __init__(
		self,
		roles: AgentRoles,
		supervisor: AgentSupervisor,
		questions: QuestionStore,
		on_session_complete: Optional[Callable[[DevAgentResult], Awaitable[None]]] = None,
	):
		"""
		Initialize the scheduler.

		Args:
			roles: Builds developer invocations
			supervisor: Spawns the agent processes
			questions: Looked up when a session exits blocked
			on_session_complete: Optional callback as each session finishes
		"""
		self.roles = roles
		self.supervisor = supervisor
		self.questions = questions
		self.on_session_complete = on_session_complete

	def prepare(self, sessions: list[SessionInput]) -> list[DevInvocation]:
		"""Validate every session up front so a bad one stops the batch before any spawn."""
		return [self.roles.dev_invocation(s.area, s.tickets) for s in sessions]

	async def spawn(self, invocation: DevInvocation) -> DevSessionHandle:
		handle = await self.supervisor.spawn(
			invocation.name,
			invocation.prompt_file,
			invocation.context,
			io_mode="pipe",
			extra_env=invocation.env,
		)
		return DevSessionHandle(
			area=invocation.area,
			tickets=invocation.tickets,
			agent_handle=handle,
		)

	async def run(
		self,
		sessions: list[SessionInput],
		parallel: bool = True,
	) -> list[DevAgentResult]:
		"""
		Run a batch of sessions.

		Args:
			sessions: Areas and their tickets
			parallel: Spawn all and wait for all (default), or one at a time

		Returns:
			One DevAgentResult per input session, in input order

		Raises:
			ConfigurationError: A session is invalid; nothing was spawned
		"""
		if not sessions:
			return []
		return await self.run_invocations(self.prepare(sessions), parallel=parallel)

	async def run_invocations(
		self,
		invocations: list[DevInvocation],
		parallel: bool = True,
	) -> list[DevAgentResult]:
		"""Run already validated invocations; see run()."""
		if not invocations:
			return []

		if parallel:
			# Fan out
			handles = [await self.spawn(inv) for inv in invocations]
			logger.info(f"Started {len(handles)} dev session(s) in parallel")
			# Fan in
			return list(await asyncio.gather(*(self._await_result(h) for h in handles)))

		results: list[DevAgentResult] = []
		for invocation in invocations:
			handle = await self.spawn(invocation)
			results.append(await self._await_result(handle))
		return results

	async def _await_result(self, handle: DevSessionHandle) -> DevAgentResult:
		try:
			outcome = await handle.agent_handle.wait()
		except AgentSpawnError as e:
			logger.warning(f"Dev session {handle.area} failed to start: {e}")
			result = DevAgentResult(area=handle.area, status=AgentStatus.ERROR, error=str(e))
		else:
			write_transcript(self.roles.config, handle.agent_handle.name, outcome)
			result = self.classify(handle.area, handle.agent_handle.name, outcome)

		if self.on_session_complete:
			try:
				await self.on_session_complete(result)
			except Exception as e:
				logger.warning(f"on_session_complete callback failed for {handle.area}: {e}")

		return result

	def classify(self, area: str, agent_name: str, outcome: AgentOutcome) -> DevAgentResult:
		"""Map an outcome to a result; blocked outcomes pick up their question."""
		status = outcome.status
		if status != AgentStatus.BLOCKED:
			return DevAgentResult(area=area, status=status, outcome=outcome)

		question_file, needs_tech_lead = self.check_blocking(agent_name)
		if question_file is None:
			logger.warning(f"Dev session {area} exited blocked without an unanswered question")

		return DevAgentResult(
			area=area,
			status=status,
			outcome=outcome,
			question_file=question_file,
			needs_tech_lead=needs_tech_lead,
		)

	def check_blocking(self, agent_name: Optional[str] = None) -> tuple[Optional[str], bool]:
		"""Latest unanswered question and whether it is routed to the tech lead."""
		path = self.questions.find_latest_unanswered(from_agent=agent_name)
		if path is None:
			return None, False

		question = self.questions.parse_question(path)
		return str(path), self.questions.route(question) == Routing.SPAWN_TECH_LEAD
