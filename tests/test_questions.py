"""Tests for the question/response store."""

import asyncio
import io
import os
import threading
from pathlib import Path

import pytest
from rich.console import Console
from rich.prompt import Prompt

from team_orchestrator import atomic
from team_orchestrator.errors import BlockingError
from team_orchestrator.questions.display import ask_user, ask_user_async, render_question
from team_orchestrator.questions.models import Question, Recipient, Routing, route_question
from team_orchestrator.questions.store import (
	QuestionStore,
	format_question,
	parse_question_text,
	response_path_for,
)


def _set_mtime(path: Path, seconds: int) -> None:
	os.utime(path, (seconds, seconds))


class TestWriteQuestion:
	"""Question files and their numbering."""

	def test_sequence_numbers(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		first = store.write_question("dev-frontend", Recipient.USER, "ctx", "First?")
		second = store.write_question("dev-backend", Recipient.PO, "ctx", "Second?")
		assert first.name == "q-001.md"
		assert second.name == "q-002.md"

	def test_numbering_continues_after_gaps(self, tmp_path: Path):
		(tmp_path / "q-007.md").write_text("# Question from: x\n")
		(tmp_path / "notes.md").write_text("not a question")
		store = QuestionStore(tmp_path)
		assert store.next_question_path().name == "q-008.md"

	def test_round_trip(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		path = store.write_question(
			"dev-api",
			Recipient.TECH_LEAD,
			"Building the users endpoint",
			"REST or GraphQL?",
			["REST", "GraphQL"],
		)
		question = store.parse_question(path)
		assert question.from_agent == "dev-api"
		assert question.for_recipient == Recipient.TECH_LEAD
		assert question.context == "Building the users endpoint"
		assert question.question == "REST or GraphQL?"
		assert question.options == ("REST", "GraphQL")
		assert question.file_path == str(path)

	def test_string_recipient_is_coerced(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		path = store.write_question("po", "nobody", "", "Hello?")
		assert store.parse_question(path).for_recipient == Recipient.USER

	def test_parse_missing_file_raises(self, tmp_path: Path):
		with pytest.raises(BlockingError):
			QuestionStore(tmp_path).parse_question(tmp_path / "q-404.md")


class TestParsing:
	"""The parser degrades instead of failing."""

	def test_unknown_recipient_goes_to_user(self):
		question = parse_question_text("# Question from: dev-x\n\n## For: bogus_value\n\n## Question\n\nWhy?\n")
		assert question.for_recipient == Recipient.USER

	def test_missing_for_defaults_to_user(self):
		question = parse_question_text("# Question from: dev-x\n\n## Question\n\nWhy?\n")
		assert question.for_recipient == Recipient.USER
		assert question.question == "Why?"

	def test_missing_body_is_empty(self):
		question = parse_question_text("# Question from: dev-x\n\n## For: po\n")
		assert question.question == ""
		assert question.context == ""
		assert question.options == ()

	def test_unknown_sections_are_skipped(self):
		content = (
			"# Question from: dev-x\n\n"
			"## For: TECH_LEAD\n\n"
			"## Background Context\n\nSome context\n\n"
			"## Scratchpad\n\nignore me\n\n"
			"## The Question\n\nWhat now?\n\n"
			"## Possible Options\n\n- A\n\n- B\n"
		)
		question = parse_question_text(content)
		assert question.for_recipient == Recipient.TECH_LEAD
		assert question.context == "Some context"
		assert question.question == "What now?"
		assert question.options == ("- A", "- B")

	def test_garbage_does_not_raise(self):
		question = parse_question_text("\x00\x01 random bytes\n###\n##\n")
		assert question.from_agent == ""

	def test_format_has_no_options_section_when_empty(self):
		text = format_question("po", Recipient.USER, "c", "q")
		assert "## Options" not in text
		assert text.startswith("# Question from: po\n\n## For: user\n")


class TestRouting:
	"""Routing is a pure function of the recipient."""

	@pytest.mark.parametrize("recipient,routing", [
		(Recipient.USER, Routing.PROMPT_USER),
		(Recipient.PO, Routing.SPAWN_PO),
		(Recipient.TECH_LEAD, Routing.SPAWN_TECH_LEAD),
	])
	def test_route(self, recipient, routing):
		assert route_question(Question(file_path="q-001.md", for_recipient=recipient)) == routing

	def test_tech_lead_ignores_question_text(self):
		question = Question(
			file_path="q-001.md",
			for_recipient=Recipient.TECH_LEAD,
			question="Ask the user please",
			options=("user", "po"),
		)
		assert route_question(question) == Routing.SPAWN_TECH_LEAD


class TestUnanswered:
	"""Latest-unanswered lookup."""

	def test_none_when_empty(self, tmp_path: Path):
		assert QuestionStore(tmp_path).find_latest_unanswered() is None

	def test_latest_by_mtime(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		first = store.write_question("a", Recipient.USER, "", "1?")
		second = store.write_question("b", Recipient.USER, "", "2?")
		_set_mtime(first, 2_000)
		_set_mtime(second, 1_000)
		assert store.find_latest_unanswered() == first

	def test_tie_breaks_on_filename(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		first = store.write_question("a", Recipient.USER, "", "1?")
		second = store.write_question("b", Recipient.USER, "", "2?")
		_set_mtime(first, 1_000)
		_set_mtime(second, 1_000)
		assert store.find_latest_unanswered() == second

	def test_answering_moves_to_next(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		first = store.write_question("a", Recipient.USER, "", "1?")
		second = store.write_question("b", Recipient.USER, "", "2?")
		_set_mtime(first, 1_000)
		_set_mtime(second, 2_000)

		store.write_response(second, "yes")
		assert store.find_latest_unanswered() == first

		store.write_response(first, "no")
		assert store.find_latest_unanswered() is None

	def test_prefers_the_asking_agent(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		mine = store.write_question("dev-frontend", Recipient.USER, "", "Mine?")
		theirs = store.write_question("dev-backend", Recipient.USER, "", "Theirs?")
		_set_mtime(mine, 1_000)
		_set_mtime(theirs, 2_000)

		assert store.find_latest_unanswered(from_agent="dev-frontend") == mine
		assert store.find_latest_unanswered(from_agent="dev-api") == theirs

	def test_undecodable_question_does_not_break_lookup(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		mine = store.write_question("dev-a", Recipient.USER, "", "Mine?")
		(tmp_path / "q-002.md").write_bytes(b"\xff\xfe# Question from: dev-b\n")
		_set_mtime(mine, 1_000)
		_set_mtime(tmp_path / "q-002.md", 2_000)

		assert store.find_latest_unanswered(from_agent="dev-a") == mine
		assert store.find_latest_unanswered() == tmp_path / "q-002.md"
		assert store.parse_question(tmp_path / "q-002.md").for_recipient == Recipient.USER


class TestResponses:
	"""Write-once responses."""

	def test_response_path(self):
		assert response_path_for("/x/q-004.md") == Path("/x/q-004.response")

	def test_write_and_read(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		question = store.write_question("po", Recipient.USER, "", "Name?")

		assert store.read_response(question) is None
		assert not store.has_response(question)

		path = store.write_response(question, "  Call it Todoist\nwith two lines  ")

		assert path.name == "q-001.response"
		content = path.read_text()
		assert content.startswith("# Response\n\n")
		assert "\n\nAnswered: " in content
		assert store.has_response(question)
		assert store.read_response(question) == "Call it Todoist\nwith two lines"

	def test_response_is_write_once(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		question = store.write_question("po", Recipient.USER, "", "Name?")
		store.write_response(question, "first")

		with pytest.raises(BlockingError):
			store.write_response(question, "second")
		assert store.read_response(question) == "first"

	def test_no_temp_files_left(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		question = store.write_question("po", Recipient.USER, "", "Name?")
		store.write_response(question, "done")
		assert sorted(p.name for p in tmp_path.iterdir()) == ["q-001.md", "q-001.response"]

	def test_response_written_concurrently_is_not_overwritten(self, tmp_path: Path, monkeypatch):
		store = QuestionStore(tmp_path)
		question = store.write_question("dev-api", Recipient.TECH_LEAD, "", "REST?")
		write_temp = atomic._write_temp

		def agent_answers_meanwhile(path, content):
			tmp_name = write_temp(path, content)
			path.write_text("# Response\n\nFrom the tech lead\n")
			return tmp_name

		monkeypatch.setattr(atomic, "_write_temp", agent_answers_meanwhile)

		with pytest.raises(BlockingError):
			store.write_response(question, "From the user")

		assert store.read_response(question) == "From the tech lead"
		assert sorted(p.name for p in tmp_path.iterdir()) == ["q-001.md", "q-001.response"]

	def test_undecodable_response_is_read(self, tmp_path: Path):
		store = QuestionStore(tmp_path)
		question = store.write_question("dev-api", Recipient.PO, "", "Name?")
		response_path_for(question).write_bytes(b"# Response\n\nTodo\xff\n")
		assert store.read_response(question).startswith("Todo")


class TestDisplay:
	"""Terminal rendering and prompting."""

	def _question(self, tmp_path: Path) -> Question:
		store = QuestionStore(tmp_path)
		path = store.write_question("dev-api", Recipient.USER, "Designing storage", "Which database?", ["Postgres", "SQLite"])
		return store.parse_question(path)

	def test_render_question(self, tmp_path: Path):
		buffer = io.StringIO()
		render_question(self._question(tmp_path), Console(file=buffer, width=120))

		text = buffer.getvalue()
		assert "Question from: dev-api" in text
		assert "Designing storage" in text
		assert "Which database?" in text
		assert "SQLite" in text

	def test_ask_user_strips_answer(self, tmp_path: Path, monkeypatch):
		monkeypatch.setattr(Prompt, "ask", classmethod(lambda cls, *args, **kwargs: "  Postgres \n"))
		console = Console(file=io.StringIO(), width=120)

		assert ask_user(self._question(tmp_path), console) == "Postgres"

	@pytest.mark.asyncio
	async def test_ask_user_async(self, tmp_path: Path, monkeypatch):
		monkeypatch.setattr(Prompt, "ask", classmethod(lambda cls, *args, **kwargs: "SQLite"))
		console = Console(file=io.StringIO(), width=120)

		assert await ask_user_async(self._question(tmp_path), console) == "SQLite"

	@pytest.mark.asyncio
	async def test_ask_user_async_can_be_cancelled(self, tmp_path: Path, monkeypatch):
		release = threading.Event()
		monkeypatch.setattr(Prompt, "ask", classmethod(lambda cls, *args, **kwargs: release.wait(10) and "late"))
		console = Console(file=io.StringIO(), width=120)

		task = asyncio.create_task(ask_user_async(self._question(tmp_path), console))
		await asyncio.sleep(0.05)
		task.cancel()
		try:
			with pytest.raises(asyncio.CancelledError):
				await asyncio.wait_for(task, 1)
		finally:
			release.set()

	@pytest.mark.asyncio
	async def test_ask_user_async_forwards_errors(self, tmp_path: Path, monkeypatch):
		def closed_stdin(cls, *args, **kwargs):
			raise EOFError()

		monkeypatch.setattr(Prompt, "ask", classmethod(closed_stdin))
		console = Console(file=io.StringIO(), width=120)

		with pytest.raises(EOFError):
			await ask_user_async(self._question(tmp_path), console)
