"""Shared test fixtures and helpers for team-orchestrator tests."""

import asyncio
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from team_orchestrator.config import Config
from team_orchestrator.orchestrator.process import AgentOutcome, IOMode
from team_orchestrator.questions.models import Recipient
from team_orchestrator.questions.store import QuestionStore


def make_config(tmp_path: Path, **overrides: Any) -> Config:
	"""Config rooted in tmp_path with all directories created."""
	config = Config(
		project_dir=tmp_path / "project",
		config_dir=tmp_path / "config",
		**overrides,
	)
	config.ensure_dirs()
	return config


def write_prompts(config: Config) -> None:
	config.prompts_dir.mkdir(parents=True, exist_ok=True)
	config.po_prompt_file.write_text("# PO\n\nWrite the PRD.\n")
	config.tech_lead_prompt_file.write_text("# Tech Lead\n\nWrite the architecture.\n")
	config.dev_prompt_file.write_text("# Dev\n\nImplement your tickets.\n")


def write_inputs(
	config: Config,
	readme: bool = True,
	prd: bool = True,
	architecture: bool = True,
) -> None:
	"""Write prompt files and whichever input documents are requested."""
	write_prompts(config)
	if readme:
		config.readme_file.write_text("# Todo App\n\nA small todo list.\n")
	if prd:
		config.prd_file.write_text("# PRD\n\nUsers can add todos.\n")
	if architecture:
		config.architecture_file.write_text("# Architecture\n\nREST API plus SPA.\n")


def agent_script(tmp_path: Path, body: str) -> list[str]:
	"""An agent command that runs the given Python body with the current interpreter."""
	script = tmp_path / f"agent_{abs(hash(body))}.py"
	script.write_text(textwrap.dedent(body))
	return [sys.executable, str(script)]


def ask_question(
	config: Config,
	from_agent: str,
	recipient: Union[Recipient, str] = Recipient.USER,
	question: str = "Which database?",
) -> Path:
	"""Write a question the way a blocked agent would."""
	return QuestionStore(config.questions_dir).write_question(
		from_agent,
		recipient,
		"Designing storage",
		question,
		["Postgres", "SQLite"],
	)


@dataclass
class SpawnCall:
	"""One recorded FakeSupervisor.spawn call."""
	name: str
	prompt_file: Path
	context: str
	io_mode: IOMode
	env: dict[str, str] = field(default_factory=dict)


Behavior = Union[AgentOutcome, Exception, Callable[[SpawnCall], Any], list]


class FakeHandle:
	"""Stands in for AgentHandle; resolves to a fixed outcome after an optional delay."""

	def __init__(self, name: str, result: Union[AgentOutcome, Exception], delay: float = 0.0):
		self.name = name
		self.result = result
		self.delay = delay
		self.terminate_calls = 0

	async def wait(self) -> AgentOutcome:
		if self.delay:
			await asyncio.sleep(self.delay)
		if isinstance(self.result, Exception):
			raise self.result
		return self.result

	def terminate(self) -> None:
		self.terminate_calls += 1


class FakeSupervisor:
	"""
	Records spawns and answers them from a per-agent behavior table.

	A behavior is an AgentOutcome, an exception to raise from wait(), a
	callable taking the SpawnCall (it may write files) and returning either,
	or a list of those consumed one per spawn.
	"""

	def __init__(
		self,
		behaviors: Optional[dict[str, Behavior]] = None,
		delays: Optional[dict[str, float]] = None,
	):
		self.behaviors = behaviors or {}
		self.delays = delays or {}
		self.calls: list[SpawnCall] = []
		self.completion_order: list[str] = []
		self.events: list[str] = []
		self.terminate_all_calls = 0

	def names(self) -> list[str]:
		return [call.name for call in self.calls]

	async def spawn(
		self,
		name: str,
		prompt_file: Union[str, Path],
		context: str = "",
		io_mode: Union[IOMode, str] = IOMode.PIPE,
		extra_env: Optional[dict[str, str]] = None,
	) -> FakeHandle:
		call = SpawnCall(
			name=name,
			prompt_file=Path(prompt_file),
			context=context,
			io_mode=IOMode(io_mode),
			env=dict(extra_env or {}),
		)
		self.calls.append(call)
		self.events.append(f"spawn:{name}")

		behavior = self.behaviors.get(name, AgentOutcome(exit_code=0))
		if isinstance(behavior, list):
			behavior = behavior.pop(0) if behavior else AgentOutcome(exit_code=0)
		if callable(behavior) and not isinstance(behavior, (AgentOutcome, Exception)):
			behavior = behavior(call)

		handle = FakeHandle(name, behavior, self.delays.get(name, 0.0))
		original_wait = handle.wait

		async def tracked_wait() -> AgentOutcome:
			try:
				return await original_wait()
			finally:
				self.completion_order.append(name)
				self.events.append(f"done:{name}")

		handle.wait = tracked_wait
		return handle

	async def run(
		self,
		name: str,
		prompt_file: Union[str, Path],
		context: str = "",
		io_mode: Union[IOMode, str] = IOMode.PIPE,
		extra_env: Optional[dict[str, str]] = None,
	) -> AgentOutcome:
		handle = await self.spawn(name, prompt_file, context, io_mode, extra_env)
		return await handle.wait()

	def active_handles(self) -> list:
		return []

	def terminate_all(self) -> int:
		self.terminate_all_calls += 1
		return 0


def success() -> AgentOutcome:
	return AgentOutcome(exit_code=0)


def error(stderr: str = "boom") -> AgentOutcome:
	return AgentOutcome(exit_code=1, stderr=stderr)


def blocked() -> AgentOutcome:
	return AgentOutcome(exit_code=2)


def writes(path: Path, content: str, outcome: Optional[AgentOutcome] = None) -> Callable[[SpawnCall], AgentOutcome]:
	"""Behavior: write a file, then exit with outcome (default success)."""
	def behavior(call: SpawnCall) -> AgentOutcome:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(content)
		return outcome or success()
	return behavior


def asks(config: Config, recipient: Union[Recipient, str] = Recipient.USER) -> Callable[[SpawnCall], AgentOutcome]:
	"""Behavior: write a question from the spawned agent, then exit blocked."""
	def behavior(call: SpawnCall) -> AgentOutcome:
		ask_question(config, call.name, recipient)
		return blocked()
	return behavior
