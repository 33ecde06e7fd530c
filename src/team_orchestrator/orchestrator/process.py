"""
Process Supervisor - launches agent processes and normalizes their exit.

Responsibilities:
- Validate the invocation before anything is started
- Spawn one agent process with the prompt (and optional context) as arguments
- Capture stdout/stderr in pipe mode, hand the terminal over in inherit mode
- Map the exit code to success / error / blocked
- Terminate gracefully, then force-kill after a grace window
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..config import Config
from ..errors import AgentConfigError, AgentSpawnError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2


class IOMode(str, Enum):
	"""How the agent's stdio is wired."""
	INHERIT = "inherit"  # interactive, attached to our terminal
	PIPE = "pipe"  # background, output captured


class AgentStatus(str, Enum):
	"""Meaning of an agent's exit code."""
	SUCCESS = "success"
	ERROR = "error"
	BLOCKED = "blocked"


@dataclass(frozen=True)
class AgentOutcome:
	"""Result of one agent process."""
	exit_code: int
	stdout: str = ""
	stderr: str = ""
	killed: bool = False

	@property
	def status(self) -> AgentStatus:
		"""Unknown exit codes count as errors."""
		if self.exit_code == EXIT_SUCCESS:
			return AgentStatus.SUCCESS
		if self.exit_code == EXIT_BLOCKED:
			return AgentStatus.BLOCKED
		return AgentStatus.ERROR

	@property
	def is_success(self) -> bool:
		return self.status == AgentStatus.SUCCESS

	@property
	def is_blocked(self) -> bool:
		return self.status == AgentStatus.BLOCKED

	@property
	def is_error(self) -> bool:
		return self.status == AgentStatus.ERROR

	def describe(self) -> str:
		"""Human-readable status."""
		if self.killed:
			return "killed"
		if self.exit_code in (EXIT_SUCCESS, EXIT_ERROR, EXIT_BLOCKED):
			return self.status.value
		return f"unknown (exit code: {self.exit_code})"


def _decode(data: Optional[bytes]) -> str:
	# surrogateescape keeps arbitrary bytes recoverable via .encode(..., "surrogateescape")
	return data.decode("utf-8", errors="surrogateescape") if data else ""


class AgentHandle:
	"""
	A running (or finished) agent process.

	Attributes:
		name: Agent name, e.g. "po", "tech_lead", "dev-frontend"
		process: The live process, or None if it could not be created
		outcome: Future resolving to an AgentOutcome, or failing with
			AgentSpawnError if the process was never created
	"""

	def __init__(
		self,
		name: str,
		process: Optional[asyncio.subprocess.Process],
		grace_period: float = 5.0,
	):
		self.name = name
		self.process = process
		self.grace_period = grace_period
		self.outcome: asyncio.Future = asyncio.get_running_loop().create_future()
		self._terminated = False
		self._kill_timer: Optional[asyncio.TimerHandle] = None

	@property
	def pid(self) -> Optional[int]:
		return self.process.pid if self.process else None

	@property
	def terminated(self) -> bool:
		"""True once terminate() has signalled the process."""
		return self._terminated

	def done(self) -> bool:
		return self.outcome.done()

	async def wait(self) -> AgentOutcome:
		return await self.outcome

	def terminate(self) -> None:
		"""
		Ask the process to stop, force-kill it after the grace period.

		Idempotent: a second call, or a call after the process exited on
		its own, does nothing.
		"""
		if self._terminated or self.process is None or self.outcome.done():
			return
		if self.process.returncode is not None:
			return

		self._terminated = True
		logger.info(f"Terminating agent {self.name} (pid {self.process.pid})")
		try:
			self.process.terminate()
		except ProcessLookupError:
			return

		loop = asyncio.get_running_loop()
		self._kill_timer = loop.call_later(self.grace_period, self._force_kill)

	def _force_kill(self) -> None:
		self._kill_timer = None
		if self.process is None or self.process.returncode is not None:
			return
		logger.warning(
			f"Agent {self.name} still running {self.grace_period}s after terminate, killing"
		)
		try:
			self.process.kill()
		except ProcessLookupError:
			pass

	async def _collect(self, capture: bool) -> None:
		try:
			if capture:
				stdout, stderr = await self.process.communicate()
			else:
				await self.process.wait()
				stdout = stderr = b""
		except asyncio.CancelledError:
			self.outcome.cancel()
			raise
		except Exception as e:
			logger.error(f"Lost track of agent {self.name}: {e}")
			if not self.outcome.done():
				self.outcome.set_exception(e)
			return
		finally:
			if self._kill_timer is not None:
				self._kill_timer.cancel()
				self._kill_timer = None

		returncode = self.process.returncode
		signalled = returncode is not None and returncode < 0
		outcome = AgentOutcome(
			exit_code=EXIT_ERROR if signalled or returncode is None else returncode,
			stdout=_decode(stdout),
			stderr=_decode(stderr),
			killed=self._terminated or signalled,
		)
		logger.info(f"Agent {self.name} exited: {outcome.describe()}")
		if not self.outcome.done():
			self.outcome.set_result(outcome)


class AgentSupervisor:
	"""
	Spawns agent processes and keeps track of the live ones.

	The agent command comes from Config.agent_command; the prompt file
	content is passed as `--prompt <text>` and a non-empty context as
	`--context <text>`.
	"""

	def __init__(self, config: Config):
		self.config = config
		self._active: set[AgentHandle] = set()
		self._tasks: set[asyncio.Task] = set()

	def build_args(self, prompt: str, context: str) -> list[str]:
		args = [*self.config.agent_command, "--prompt", prompt]
		if context and context.strip():
			args.extend(["--context", context])
		return args

	def build_env(self, name: str, extra_env: Optional[dict[str, str]] = None) -> dict[str, str]:
		env = dict(os.environ)
		env["ORCHESTRATOR_DIR"] = str(self.config.orchestrator_dir)
		env["ORCHESTRATOR_AGENT"] = name
		env.update(extra_env or {})
		return env

	@staticmethod
	def _read_prompt(name: str, prompt_file: Union[str, Path]) -> str:
		if not name or not name.strip():
			raise AgentConfigError("Agent name is required")
		if not prompt_file or not str(prompt_file).strip():
			raise AgentConfigError("Prompt file path is required")
		path = Path(prompt_file)
		if not path.is_file():
			raise AgentConfigError(f"Prompt file not found: {path}")
		try:
			return path.read_text(encoding="utf-8")
		except (OSError, UnicodeDecodeError) as e:
			raise AgentConfigError(f"Prompt file not readable: {path} ({e})") from e

	async def spawn(
		self,
		name: str,
		prompt_file: Union[str, Path],
		context: str = "",
		io_mode: Union[IOMode, str] = IOMode.PIPE,
		extra_env: Optional[dict[str, str]] = None,
	) -> AgentHandle:
		"""
		Start one agent process.

		Args:
			name: Agent name
			prompt_file: Markdown prompt passed to the agent
			context: Free-text context; omitted from the arguments if empty
			io_mode: "inherit" (interactive) or "pipe" (captured)
			extra_env: Environment overrides for this agent

		Returns:
			AgentHandle whose outcome resolves when the process exits

		Raises:
			AgentConfigError: Invalid arguments; nothing was started
		"""
		try:
			io_mode = IOMode(io_mode)
		except ValueError:
			raise AgentConfigError('io_mode must be "inherit" or "pipe"') from None
		prompt = self._read_prompt(name, prompt_file)

		args = self.build_args(prompt, context)
		env = self.build_env(name, extra_env)
		capture = io_mode == IOMode.PIPE

		try:
			process = await asyncio.create_subprocess_exec(
				*args,
				stdin=asyncio.subprocess.DEVNULL if capture else None,
				stdout=asyncio.subprocess.PIPE if capture else None,
				stderr=asyncio.subprocess.PIPE if capture else None,
				cwd=str(self.config.project_dir),
				env=env,
			)
		except OSError as e:
			logger.error(f"Failed to spawn agent {name}: {e}")
			handle = AgentHandle(name, None, self.config.grace_period)
			handle.outcome.set_exception(AgentSpawnError(f"Failed to spawn agent {name}: {e}"))
			return handle

		logger.info(f"Spawned agent {name} (pid {process.pid}, {io_mode.value})")
		handle = AgentHandle(name, process, self.config.grace_period)
		self._active.add(handle)
		handle.outcome.add_done_callback(lambda _: self._active.discard(handle))

		task = asyncio.create_task(handle._collect(capture))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return handle

	async def run(
		self,
		name: str,
		prompt_file: Union[str, Path],
		context: str = "",
		io_mode: Union[IOMode, str] = IOMode.PIPE,
		extra_env: Optional[dict[str, str]] = None,
	) -> AgentOutcome:
		"""Spawn an agent and wait for its outcome."""
		handle = await self.spawn(name, prompt_file, context, io_mode, extra_env)
		return await handle.wait()

	def active_handles(self) -> list[AgentHandle]:
		return list(self._active)

	def terminate_all(self) -> int:
		"""Terminate every live agent. Returns how many were signalled."""
		handles = self.active_handles()
		for handle in handles:
			handle.terminate()
		return len(handles)
