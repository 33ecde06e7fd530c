"""Question and routing types for the blocking-question protocol."""

from dataclasses import dataclass, field
from enum import Enum


class Recipient(str, Enum):
	"""Who a question is addressed to."""
	USER = "user"
	PO = "po"
	TECH_LEAD = "tech_lead"

	@classmethod
	def parse(cls, value: str) -> "Recipient":
		"""Coerce free text to a recipient; anything unknown goes to the user."""
		try:
			return cls(value.strip().lower())
		except ValueError:
			return cls.USER


class Routing(str, Enum):
	"""How a question gets answered."""
	PROMPT_USER = "prompt_user"
	SPAWN_PO = "spawn_po"
	SPAWN_TECH_LEAD = "spawn_tech_lead"


ROUTES: dict[Recipient, Routing] = {
	Recipient.USER: Routing.PROMPT_USER,
	Recipient.PO: Routing.SPAWN_PO,
	Recipient.TECH_LEAD: Routing.SPAWN_TECH_LEAD,
}


@dataclass(frozen=True)
class Question:
	"""A parsed question file. Never modified after the agent writes it."""
	file_path: str
	from_agent: str = ""
	for_recipient: Recipient = Recipient.USER
	context: str = ""
	question: str = ""
	options: tuple[str, ...] = field(default_factory=tuple)
	raw_content: str = ""


def route_question(question: Question) -> Routing:
	"""Pure function of the recipient: user/po/tech_lead -> prompt/spawn."""
	return ROUTES.get(question.for_recipient, Routing.PROMPT_USER)
