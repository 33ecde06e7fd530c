"""Shared error types for the orchestrator package."""


class OrchestratorError(Exception):
	"""Base exception for orchestrator errors.

	Use this for user-facing errors that should have actionable messages.
	"""

	pass


class ConfigurationError(OrchestratorError):
	"""Missing required file or argument, raised before any process starts."""

	pass


class AgentConfigError(ConfigurationError):
	"""Invalid arguments to AgentSupervisor.spawn."""

	pass


class AgentSpawnError(OrchestratorError):
	"""The operating system could not create the agent process.

	Only ever delivered through an AgentHandle's outcome future.
	"""

	pass


class StateError(OrchestratorError):
	"""Invalid operation on orchestration state."""

	pass


class PhaseError(OrchestratorError):
	"""A phase ended in an outcome the driver cannot continue from."""

	pass


class InvalidTransitionError(PhaseError, StateError):
	"""Phase transition outside the fixed adjacency."""

	pass


class SessionsStalledError(PhaseError):
	"""Developer sessions remain that the driver will not retry on its own."""

	def __init__(self, areas: list[str]):
		self.areas = areas
		super().__init__(
			f"Dev sessions need manual intervention: {', '.join(areas)}. "
			"Fix the cause and run 'team-orchestrator resume'."
		)


class BlockingError(OrchestratorError):
	"""Invalid operation on the question/response store."""

	pass
