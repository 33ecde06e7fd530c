"""
Orchestration Driver - the phase loop.

init -> po_conversation -> tech_lead_design -> dev_sessions -> completed

Every step goes through the StateManager, so a killed run can be resumed
from the last persisted phase. Agent exit codes are handled here as data;
only configuration and phase errors abort a run.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol

from rich.console import Console

from ..config import Config
from ..errors import ConfigurationError, OrchestratorError, PhaseError, SessionsStalledError
from ..questions.display import ask_user_async
from ..questions.models import Question, Routing
from ..questions.store import QuestionStore
from ..state.models import BlockedAgent, Phase, SessionStatus, WaitingFor
from ..state.store import StateManager, StateStore
from .process import AgentStatus, AgentSupervisor
from .roles import PO_AGENT, TECH_LEAD_AGENT, AgentRoles, dev_agent_name, validate_artifact
from .scheduler import DevAgentResult, SessionInput, SessionScheduler

logger = logging.getLogger(__name__)

WAITING_FOR = {
	Routing.PROMPT_USER: WaitingFor.USER,
	Routing.SPAWN_PO: WaitingFor.PO,
	Routing.SPAWN_TECH_LEAD: WaitingFor.TECH_LEAD,
}


class AreaSource(Protocol):
	"""Anything that can list areas with open tickets (see github_client.IssueTracker)."""

	def area_tickets(self) -> list: ...


QuestionAnswerer = Callable[[Question], Awaitable[str]]


def blocked_agent_type(agent_name: str) -> BlockedAgent:
	"""Role of an agent, from its name."""
	if agent_name == PO_AGENT:
		return BlockedAgent.PO
	if agent_name == TECH_LEAD_AGENT:
		return BlockedAgent.TECH_LEAD
	return BlockedAgent.DEV


@dataclass
class OrchestrationResult:
	"""How a run ended."""
	final_phase: Phase
	success: bool
	error: Optional[str] = None


class Orchestrator:
	"""
	Drives the workflow through its phases.

	Usage:
		orchestrator = Orchestrator(config, issue_source=IssueTracker(...))
		orchestrator.install_signal_handlers()
		result = await orchestrator.run()
	"""

	def __init__(
		self,
		config: Config,
		state: Optional[StateManager] = None,
		supervisor: Optional[AgentSupervisor] = None,
		questions: Optional[QuestionStore] = None,
		issue_source: Optional[AreaSource] = None,
		answer_question: Optional[QuestionAnswerer] = None,
		console: Optional[Console] = None,
	):
		self.config = config
		self.state = state or StateManager(StateStore(config.state_file))
		self.supervisor = supervisor or AgentSupervisor(config)
		self.questions = questions or QuestionStore(config.questions_dir)
		self.issue_source = issue_source
		self.console = console or Console()
		self.answer_question = answer_question or (
			lambda question: ask_user_async(question, self.console)
		)

		self.roles = AgentRoles(config, self.supervisor)
		self.scheduler = SessionScheduler(
			self.roles,
			self.supervisor,
			self.questions,
			on_session_complete=self._on_session_complete,
		)

		self.running = False
		self.stopping = False
		self._stop_requested = asyncio.Event()
		self._phase_handlers = {
			Phase.INIT: self._run_init,
			Phase.PO_CONVERSATION: self._run_po_conversation,
			Phase.TECH_LEAD_DESIGN: self._run_tech_lead_design,
			Phase.DEV_SESSIONS: self._run_dev_sessions,
		}

	# -- Public API --

	async def run(self) -> OrchestrationResult:
		"""Run the phase loop from the persisted phase until completed, stopped or failed."""
		return await self._execute(resuming=False)

	async def resume(self) -> OrchestrationResult:
		"""
		Continue a previous run.

		Sessions left running or blocked by a killed run are reset to
		pending, and a pending blocking question is resolved first.
		"""
		return await self._execute(resuming=True)

	def stop(self) -> None:
		"""Terminate every live agent and persist state as is."""
		if self.stopping:
			return
		self.stopping = True
		self.running = False
		self._stop_requested.set()

		count = self.supervisor.terminate_all()
		logger.info(f"Stop requested, terminated {count} agent(s)")
		self.state.save()
		self._status("[yellow]Stopping.[/yellow] Run 'team-orchestrator resume' to continue.")

	def install_signal_handlers(self) -> None:
		"""Route SIGINT/SIGTERM to stop(). Call from inside the running loop."""
		loop = asyncio.get_running_loop()
		for sig in (signal.SIGTERM, signal.SIGINT):
			loop.add_signal_handler(sig, self.stop)

	def remove_signal_handlers(self) -> None:
		loop = asyncio.get_running_loop()
		for sig in (signal.SIGTERM, signal.SIGINT):
			loop.remove_signal_handler(sig)

	# -- Loop --

	async def _execute(self, resuming: bool) -> OrchestrationResult:
		self.running = True
		self.stopping = False
		self._stop_requested.clear()
		try:
			if resuming:
				self._status(f"Resuming orchestration from phase: [bold]{self.state.phase.value}[/bold]")
				self._reset_stale_sessions()
				if self.state.is_blocked():
					await self._resume_blocked()
			else:
				self._status(f"Starting orchestration at phase: [bold]{self.state.phase.value}[/bold]")

			while self.running and not self.state.is_complete():
				phase = self.state.phase
				logger.debug(f"Executing phase: {phase.value}")
				await self._phase_handlers[phase]()

		except OrchestratorError as e:
			logger.error(f"Orchestration failed in phase {self.state.phase.value}: {e}")
			self._status(f"[red]Orchestration error:[/red] {e}")
			return OrchestrationResult(self.state.phase, success=False, error=str(e))
		finally:
			self.running = False

		if self.state.is_complete():
			self._status("[green]Orchestration complete.[/green]")
			return OrchestrationResult(self.state.phase, success=True)

		return OrchestrationResult(
			self.state.phase,
			success=False,
			error="Stopped before completion",
		)

	def _reset_stale_sessions(self) -> None:
		for status in (SessionStatus.RUNNING, SessionStatus.BLOCKED):
			for session in self.state.get_dev_sessions_by_status(status):
				logger.info(f"Resetting stale {status.value} session {session.area} to pending")
				self.state.update_dev_session(session.area, status=SessionStatus.PENDING)

	async def _resume_blocked(self) -> None:
		blocked = self.state.state.blocked
		question_file = blocked.question_file

		if self.questions.has_response(question_file):
			self._status("Previous question already answered. Continuing...")
			self.state.clear_blocked()
			return

		if not Path(question_file).exists():
			logger.warning(f"Blocked on {question_file}, which no longer exists; clearing")
			self.state.clear_blocked()
			return

		self._status(f"Blocked state detected. Waiting for: {blocked.waiting_for.value}")
		question = self.questions.parse_question(question_file)
		await self._answer(question, self.questions.route(question))
		if self.stopping:
			return
		self.state.clear_blocked()

	# -- Phases --

	async def _run_init(self) -> None:
		self.state.transition_to(Phase.PO_CONVERSATION)

	async def _run_po_conversation(self) -> None:
		self._banner("PO Conversation")
		self._status("Starting PO agent (interactive)...")
		self.state.set_current_agent(PO_AGENT)

		try:
			result = await self.roles.run_po()
		except OrchestratorError:
			self.state.set_current_agent(None)
			raise

		if self.stopping:
			return

		if result.status == AgentStatus.SUCCESS and result.artifact_created:
			self._check_artifact(result.artifact_path)
			self.state.set_current_agent(None)
			self._status("[green]PRD created.[/green]")
			self.state.transition_to(Phase.TECH_LEAD_DESIGN)
		elif result.status == AgentStatus.BLOCKED:
			await self._handle_blocked_agent(PO_AGENT)
		else:
			self.state.set_current_agent(None)
			raise PhaseError(
				f"PO agent did not produce a PRD ({result.outcome.describe()}, "
				f"expected {self.config.prd_file})"
			)

	async def _run_tech_lead_design(self) -> None:
		self._banner("Tech Lead Design")
		self._status("Starting tech lead agent...")
		self.state.set_current_agent(TECH_LEAD_AGENT)

		try:
			result = await self.roles.run_tech_lead()
		except OrchestratorError:
			self.state.set_current_agent(None)
			raise

		if self.stopping:
			return

		if result.status == AgentStatus.SUCCESS and result.artifact_created:
			self._check_artifact(result.artifact_path)
			self._status("[green]Architecture created.[/green] Loading tickets...")
			await self._seed_dev_sessions()
			self.state.set_current_agent(None)
			self.state.transition_to(Phase.DEV_SESSIONS)
		elif result.status == AgentStatus.BLOCKED:
			await self._handle_blocked_agent(TECH_LEAD_AGENT)
		else:
			self.state.set_current_agent(None)
			raise PhaseError(
				f"Tech lead agent did not produce an architecture document "
				f"({result.outcome.describe()}, expected {self.config.architecture_file})"
			)

	async def _seed_dev_sessions(self) -> None:
		if self.issue_source is None:
			raise ConfigurationError(
				"No issue tracker configured. Run 'team-orchestrator init <repo-url>' first."
			)

		area_tickets = await asyncio.to_thread(self.issue_source.area_tickets)
		for item in area_tickets:
			if not item.tickets:
				continue
			if self.state.get_dev_session(item.area) is not None:
				logger.info(f"Dev session for {item.area} already exists, keeping it")
				continue
			self.state.add_dev_session(item.area, item.tickets)
			self._status(f"  area [bold]{item.area}[/bold]: {len(item.tickets)} ticket(s)")

		if not self.state.state.dev_sessions:
			self._status("No areas with open tickets.")

	async def _run_dev_sessions(self) -> None:
		self._banner("Dev Sessions")

		remaining = [
			s for s in self.state.state.dev_sessions
			if s.status != SessionStatus.COMPLETED
		]
		if not remaining:
			self._status("[green]All dev sessions completed.[/green]")
			self.state.transition_to(Phase.COMPLETED)
			return

		pending = self.state.get_dev_sessions_by_status(SessionStatus.PENDING)
		if not pending:
			raise SessionsStalledError([s.area for s in remaining])

		invocations = self.scheduler.prepare(
			[SessionInput(area=s.area, tickets=list(s.tickets)) for s in pending]
		)
		for session in pending:
			self.state.update_dev_session(session.area, status=SessionStatus.RUNNING)

		mode = "parallel" if self.config.parallel else "sequential"
		self._status(f"Running {len(invocations)} dev session(s) ({mode})...")
		results = await self.scheduler.run_invocations(invocations, parallel=self.config.parallel)

		for result in results:
			await self._apply_dev_result(result)

	async def _apply_dev_result(self, result: DevAgentResult) -> None:
		area = result.area

		if result.status == AgentStatus.SUCCESS:
			self.state.update_dev_session(area, status=SessionStatus.COMPLETED)
			return

		# Blocked and failed sessions stay running for the next resume
		if self.stopping:
			return

		if result.status == AgentStatus.BLOCKED:
			self.state.update_dev_session(area, status=SessionStatus.BLOCKED)
			if result.question_file is None:
				self._status(f"[yellow]Dev session {area} blocked without a question.[/yellow]")
				return

			if result.needs_tech_lead:
				self._status(f"Dev session {area} needs the tech lead")
			await self._resolve_question(result.question_file, dev_agent_name(area))
			if self.stopping:
				return
			self.state.update_dev_session(area, status=SessionStatus.PENDING)
			return

		reason = result.error or (result.outcome.describe() if result.outcome else "error")
		self._status(f"[red]Dev session {area} failed:[/red] {reason}")

	async def _on_session_complete(self, result: DevAgentResult) -> None:
		style = {
			AgentStatus.SUCCESS: "green",
			AgentStatus.BLOCKED: "yellow",
			AgentStatus.ERROR: "red",
		}[result.status]
		self._status(f"  {dev_agent_name(result.area)}: [{style}]{result.status.value}[/{style}]")

	# -- Blocking questions --

	async def _handle_blocked_agent(self, agent_name: str) -> None:
		question_file = self.questions.find_latest_unanswered(from_agent=agent_name)
		if question_file is None:
			self.state.set_current_agent(None)
			raise PhaseError(
				f"{agent_name} exited blocked without leaving a question in "
				f"{self.config.questions_dir}"
			)
		await self._resolve_question(str(question_file), agent_name)

	async def _resolve_question(self, question_file: str, agent_name: str) -> None:
		"""Record the blocked state, get an answer, clear the blocked state."""
		question = self.questions.parse_question(question_file)
		routing = self.questions.route(question)

		self.state.set_blocked(blocked_agent_type(agent_name), question_file, WAITING_FOR[routing])
		await self._answer(question, routing)
		# A stopped run stays blocked so resume asks again
		if self.stopping:
			return
		self.state.clear_blocked()

	async def _answer(self, question: Question, routing: Routing) -> None:
		"""Write a response for the question unless one exists already or the run is stopped."""
		if self.questions.has_response(question.file_path):
			return

		if routing != Routing.PROMPT_USER:
			role = "PO" if routing == Routing.SPAWN_PO else "tech lead"
			self._status(f"Asking the {role} to answer {Path(question.file_path).name}...")
			answer = await self.roles.consult(routing, question)
			if self.stopping or self.questions.has_response(question.file_path):
				return
			if answer:
				self.questions.write_response(question.file_path, answer)
				return
			self._status(f"[yellow]The {role} gave no answer, asking you instead.[/yellow]")

		response = await self._ask_user(question)
		if response is None:
			logger.info(f"Stopped while waiting for an answer to {question.file_path}")
			return
		self.questions.write_response(question.file_path, response)

	async def _ask_user(self, question: Question) -> Optional[str]:
		"""The user's answer, or None if stop() is called before it arrives."""
		if self.stopping:
			return None

		answer = asyncio.ensure_future(self.answer_question(question))
		stopped = asyncio.ensure_future(self._stop_requested.wait())
		try:
			await asyncio.wait({answer, stopped}, return_when=asyncio.FIRST_COMPLETED)
		finally:
			stopped.cancel()
			if self.stopping or not answer.done():
				answer.cancel()

		if self.stopping:
			return None
		return answer.result()

	# -- Output --

	def _banner(self, title: str) -> None:
		self.console.rule(f"[bold]{title}[/bold]")

	def _status(self, message: str) -> None:
		self.console.print(message)

	def _check_artifact(self, path: Optional[Path]) -> None:
		if path is None:
			return
		valid, reason = validate_artifact(path)
		if not valid:
			logger.warning(f"Artifact check: {reason}")
