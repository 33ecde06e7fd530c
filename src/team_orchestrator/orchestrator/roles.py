"""
Agent roles - what each role is given and what counts as its output.

- PO: README in, interactive session, writes the PRD
- Tech lead: PRD in, background session, writes the architecture doc
- Developer: assignment + PRD + architecture in, background session per area
- Consultation: a PO or tech-lead agent answering another agent's question
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..atomic import atomic_write_text
from ..config import Config
from ..errors import ConfigurationError
from ..questions.models import Question, Routing
from ..questions.store import response_path_for
from .process import AgentOutcome, AgentStatus, AgentSupervisor, IOMode

logger = logging.getLogger(__name__)

PO_AGENT = "po"
TECH_LEAD_AGENT = "tech_lead"


def dev_agent_name(area: str) -> str:
	return f"dev-{area}"


@dataclass
class RoleResult:
	"""Outcome of a PO or tech-lead run plus whether its artifact exists."""
	outcome: AgentOutcome
	artifact_created: bool
	artifact_path: Optional[Path] = None

	@property
	def status(self) -> AgentStatus:
		return self.outcome.status


@dataclass
class DevInvocation:
	"""Everything needed to spawn one developer agent."""
	area: str
	tickets: list[int]
	name: str
	prompt_file: Path
	context: str
	env: dict[str, str] = field(default_factory=dict)


def _with_additional(parts: list[str], additional_context: Optional[str]) -> list[str]:
	if additional_context and additional_context.strip():
		parts.extend(["", "# Additional Context", "", additional_context])
	return parts


def build_po_context(readme: str, additional_context: Optional[str] = None) -> str:
	parts = ["# README", "", readme]
	return "\n".join(_with_additional(parts, additional_context))


def build_tech_lead_context(prd: str, additional_context: Optional[str] = None) -> str:
	parts = ["# PRD (Product Requirements Document)", "", prd]
	return "\n".join(_with_additional(parts, additional_context))


def build_dev_context(
	area: str,
	tickets: list[int],
	prd: str,
	architecture: str,
	additional_context: Optional[str] = None,
) -> str:
	parts = [
		"# Your Assignment",
		"",
		f"Area: {area}",
		f"Tickets: {', '.join(f'#{t}' for t in tickets)}",
		"",
		"# PRD (Product Requirements Document)",
		"",
		prd,
		"",
		"# Architecture",
		"",
		architecture,
	]
	return "\n".join(_with_additional(parts, additional_context))


def build_consultation_context(question: Question) -> str:
	"""Context for an agent asked to answer another agent's question."""
	lines = [
		"# Question To Answer",
		"",
		f"From: {question.from_agent or 'unknown agent'}",
		"",
		"## Context",
		"",
		question.context,
		"",
		"## Question",
		"",
		question.question,
	]
	if question.options:
		lines.extend(["", "## Options", ""])
		lines.extend(question.options)
	lines.extend([
		"",
		"# Instructions",
		"",
		f"Write your answer to {response_path_for(question.file_path)} "
		"or print it to stdout, then exit 0.",
	])
	return "\n".join(lines)


def read_required(path: Path, what: str) -> str:
	"""Read an input document the role cannot run without."""
	if not path.is_file():
		raise ConfigurationError(f"{what} not found: {path}")
	return path.read_text(encoding="utf-8", errors="replace")


def artifact_exists(path: Path) -> bool:
	"""Evidence an agent produced its document: the file exists and is not empty."""
	return path.is_file() and path.stat().st_size > 0


def validate_artifact(path: Path) -> tuple[bool, Optional[str]]:
	"""Check a produced markdown document. Returns (valid, reason)."""
	if not path.is_file():
		return False, f"{path.name} not found"
	content = path.read_text(encoding="utf-8", errors="replace")
	if not content.strip():
		return False, f"{path.name} is empty"
	if "#" not in content:
		return False, f"{path.name} appears to be malformed (no headings)"
	return True, None


def write_transcript(config: Config, name: str, outcome: AgentOutcome) -> Optional[Path]:
	"""Keep captured output of a background agent under .orchestrator/sessions/."""
	if not outcome.stdout and not outcome.stderr:
		return None
	path = config.sessions_dir / f"{name}.log"
	content = (
		f"# {name}: {outcome.describe()} (exit code {outcome.exit_code})\n\n"
		f"## stdout\n\n{outcome.stdout}\n\n## stderr\n\n{outcome.stderr}\n"
	)
	atomic_write_text(path, content)
	return path


class AgentRoles:
	"""Invokes the PO, tech-lead and developer roles through the supervisor."""

	def __init__(self, config: Config, supervisor: AgentSupervisor):
		self.config = config
		self.supervisor = supervisor

	async def run_po(self, additional_context: Optional[str] = None) -> RoleResult:
		"""Interactive PO session; success needs the PRD on disk."""
		readme = read_required(self.config.readme_file, "README file")
		context = build_po_context(readme, additional_context)

		outcome = await self.supervisor.run(
			PO_AGENT,
			self.config.po_prompt_file,
			context,
			io_mode=IOMode.INHERIT,
		)

		created = artifact_exists(self.config.prd_file)
		return RoleResult(
			outcome=outcome,
			artifact_created=created,
			artifact_path=self.config.prd_file if created else None,
		)

	async def run_tech_lead(self, additional_context: Optional[str] = None) -> RoleResult:
		"""Background tech-lead session; success needs the architecture doc on disk."""
		prd = read_required(self.config.prd_file, "PRD file")
		context = build_tech_lead_context(prd, additional_context)

		outcome = await self.supervisor.run(
			TECH_LEAD_AGENT,
			self.config.tech_lead_prompt_file,
			context,
			io_mode=IOMode.PIPE,
		)
		write_transcript(self.config, TECH_LEAD_AGENT, outcome)

		created = artifact_exists(self.config.architecture_file)
		return RoleResult(
			outcome=outcome,
			artifact_created=created,
			artifact_path=self.config.architecture_file if created else None,
		)

	def dev_invocation(
		self,
		area: str,
		tickets: list[int],
		additional_context: Optional[str] = None,
	) -> DevInvocation:
		"""
		Validate and assemble a developer invocation.

		Raises:
			ConfigurationError: Empty area/tickets or a missing input document
		"""
		if not area or not area.strip():
			raise ConfigurationError("Area is required")
		if not tickets:
			raise ConfigurationError(f"At least one ticket is required for area {area}")
		if not self.config.dev_prompt_file.is_file():
			raise ConfigurationError(f"Dev prompt file not found: {self.config.dev_prompt_file}")

		prd = read_required(self.config.prd_file, "PRD file")
		architecture = read_required(self.config.architecture_file, "Architecture file")

		return DevInvocation(
			area=area,
			tickets=list(tickets),
			name=dev_agent_name(area),
			prompt_file=self.config.dev_prompt_file,
			context=build_dev_context(area, tickets, prd, architecture, additional_context),
			env={
				"ORCHESTRATOR_AREA": area,
				"ORCHESTRATOR_TICKETS": ",".join(str(t) for t in tickets),
			},
		)

	async def consult(self, routing: Routing, question: Question) -> Optional[str]:
		"""
		Ask the PO or tech-lead role to answer a question.

		Returns:
			The answer the agent printed, or None if it printed none or
			wrote the response file itself.
		"""
		if routing == Routing.SPAWN_PO:
			name, prompt_file = f"{PO_AGENT}-consult", self.config.po_prompt_file
		elif routing == Routing.SPAWN_TECH_LEAD:
			name, prompt_file = f"{TECH_LEAD_AGENT}-consult", self.config.tech_lead_prompt_file
		else:
			return None

		response_file = response_path_for(question.file_path)
		outcome = await self.supervisor.run(
			name,
			prompt_file,
			build_consultation_context(question),
			io_mode=IOMode.PIPE,
			extra_env={
				"ORCHESTRATOR_QUESTION_FILE": str(question.file_path),
				"ORCHESTRATOR_RESPONSE_FILE": str(response_file),
			},
		)
		write_transcript(self.config, name, outcome)

		if response_file.exists():
			return None
		if outcome.is_success and outcome.stdout.strip():
			return outcome.stdout.strip()

		logger.warning(f"{name} gave no answer ({outcome.describe()})")
		return None
