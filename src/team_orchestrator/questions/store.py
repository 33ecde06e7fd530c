"""
Question Store - file-based question/response protocol.

A blocked agent writes `q-NNN.md` into the questions directory and exits
with code 2. The answer lands next to it as `q-NNN.response`; the presence
of that file is the only "answered" signal.

Question file layout:

	# Question from: <agent-name>

	## For: <user|po|tech_lead>

	## Context

	<free text>

	## Question

	<free text>

	## Options

	<one option per line>
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from ..atomic import atomic_create_text, atomic_write_text
from ..errors import BlockingError
from .models import Question, Recipient, Routing, route_question

logger = logging.getLogger(__name__)

QUESTION_FILE_RE = re.compile(r"^q-(\d+)\.md$")
FROM_RE = re.compile(r"^#\s*Question from:\s*(.+)$", re.IGNORECASE)
FOR_RE = re.compile(r"^##\s*For:\s*(.+)$", re.IGNORECASE)
SECTION_RE = re.compile(r"^##\s*(.+)$")

RESPONSE_HEADER = "# Response"
ANSWERED_PREFIX = "Answered:"


def response_path_for(question_file: Union[str, Path]) -> Path:
	"""q-001.md -> q-001.response"""
	return Path(question_file).with_suffix(".response")


def format_question(
	from_agent: str,
	recipient: Recipient,
	context: str,
	question: str,
	options: Iterable[str] = (),
) -> str:
	"""Render a question in the on-disk markdown layout."""
	lines = [
		f"# Question from: {from_agent}",
		"",
		f"## For: {recipient.value}",
		"",
		"## Context",
		"",
		context,
		"",
		"## Question",
		"",
		question,
	]

	options = list(options)
	if options:
		lines.extend(["", "## Options", ""])
		lines.extend(options)

	return "\n".join(lines) + "\n"


def parse_question_text(content: str, file_path: str = "") -> Question:
	"""
	Parse question markdown.

	Never raises on malformed input: unknown sections are skipped, a missing
	or unknown "For" goes to the user, a missing body parses as "".
	"""
	from_agent = ""
	recipient = Recipient.USER
	sections: dict[str, list[str]] = {"context": [], "question": [], "options": []}
	current: Optional[str] = None

	for line in content.splitlines():
		match = FROM_RE.match(line)
		if match:
			from_agent = match.group(1).strip()
			continue

		match = FOR_RE.match(line)
		if match:
			recipient = Recipient.parse(match.group(1))
			continue

		match = SECTION_RE.match(line)
		if match:
			name = match.group(1).strip().lower()
			if "context" in name:
				current = "context"
			elif "question" in name:
				current = "question"
			elif "option" in name:
				current = "options"
			else:
				current = None
			continue

		if current:
			sections[current].append(line)

	options = tuple(
		line.strip() for line in sections["options"] if line.strip()
	)

	return Question(
		file_path=file_path,
		from_agent=from_agent,
		for_recipient=recipient,
		context="\n".join(sections["context"]).strip(),
		question="\n".join(sections["question"]).strip(),
		options=options,
		raw_content=content,
	)


class QuestionStore:
	"""
	Append-only store of question files and their responses.

	Usage:
		store = QuestionStore(config.questions_dir)
		path = store.write_question("dev-frontend", Recipient.TECH_LEAD, ctx, "Which API?")
		latest = store.find_latest_unanswered()
		store.write_response(latest, "Use REST")
	"""

	def __init__(self, questions_dir: Path):
		self.questions_dir = Path(questions_dir)

	def _ensure_dir(self) -> None:
		self.questions_dir.mkdir(parents=True, exist_ok=True)

	def list_questions(self) -> list[Path]:
		"""Question files, newest first by mtime; ties break on filename (greatest first)."""
		self._ensure_dir()
		files = [
			p for p in self.questions_dir.iterdir()
			if p.is_file() and QUESTION_FILE_RE.match(p.name)
		]
		return sorted(files, key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)

	def next_question_path(self) -> Path:
		"""q-<max+1>, zero-padded to three digits."""
		self._ensure_dir()
		numbers = [
			int(match.group(1))
			for match in (QUESTION_FILE_RE.match(p.name) for p in self.questions_dir.iterdir())
			if match
		]
		next_number = max(numbers) + 1 if numbers else 1
		return self.questions_dir / f"q-{next_number:03d}.md"

	def write_question(
		self,
		from_agent: str,
		recipient: Union[Recipient, str],
		context: str,
		question: str,
		options: Iterable[str] = (),
	) -> Path:
		"""Create the next question file. Returns its path."""
		if not isinstance(recipient, Recipient):
			recipient = Recipient.parse(recipient)

		path = self.next_question_path()
		atomic_write_text(path, format_question(from_agent, recipient, context, question, options))
		logger.debug(f"Wrote question {path.name} from {from_agent} for {recipient.value}")
		return path

	def parse_question(self, question_file: Union[str, Path]) -> Question:
		"""
		Parse a question file.

		Raises:
			BlockingError: If the file does not exist
		"""
		path = Path(question_file)
		if not path.exists():
			raise BlockingError(f"Question file not found: {path}")
		# Agents write these files; undecodable bytes must not stop the run
		content = path.read_text(encoding="utf-8", errors="replace")
		return parse_question_text(content, file_path=str(path))

	def find_latest_unanswered(self, from_agent: Optional[str] = None) -> Optional[Path]:
		"""
		Most recently modified question without a response, or None.

		With from_agent, that agent's own latest unanswered question is
		preferred, falling back to the latest one overall. Parallel
		developers blocking at the same time each get their own question.
		"""
		unanswered = [p for p in self.list_questions() if not response_path_for(p).exists()]
		if not unanswered:
			return None

		if from_agent:
			for path in unanswered:
				if self.parse_question(path).from_agent == from_agent:
					return path

		return unanswered[0]

	def has_response(self, question_file: Union[str, Path]) -> bool:
		return response_path_for(question_file).exists()

	def write_response(self, question_file: Union[str, Path], text: str) -> Path:
		"""
		Record the answer to a question. Responses are write-once.

		Raises:
			BlockingError: If the question already has a response
		"""
		response_file = response_path_for(question_file)
		answered = datetime.now(timezone.utc).isoformat()
		content = f"{RESPONSE_HEADER}\n\n{text}\n\n{ANSWERED_PREFIX} {answered}\n"
		try:
			atomic_create_text(response_file, content)
		except FileExistsError:
			raise BlockingError(f"Question already answered: {response_file}") from None
		logger.info(f"Recorded response for {Path(question_file).name}")
		return response_file

	def read_response(self, question_file: Union[str, Path]) -> Optional[str]:
		"""The trimmed response text, or None if unanswered."""
		response_file = response_path_for(question_file)
		if not response_file.exists():
			return None

		lines = response_file.read_text(encoding="utf-8", errors="replace").splitlines()

		start = 0
		for i, line in enumerate(lines):
			if line.startswith(RESPONSE_HEADER):
				start = i + 1
				break

		end = len(lines)
		for i in range(len(lines) - 1, start - 1, -1):
			if lines[i].startswith(ANSWERED_PREFIX):
				end = i
				break

		return "\n".join(lines[start:end]).strip()

	def route(self, question: Question) -> Routing:
		return route_question(question)
