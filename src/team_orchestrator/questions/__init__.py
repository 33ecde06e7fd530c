"""Questions module - blocking-question files, responses and routing."""

from .models import Question, Recipient, Routing, route_question
from .store import QuestionStore, parse_question_text, response_path_for

__all__ = [
	"Question",
	"Recipient",
	"Routing",
	"route_question",
	"QuestionStore",
	"parse_question_text",
	"response_path_for",
]
