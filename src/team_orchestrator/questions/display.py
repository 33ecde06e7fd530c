"""Rich rendering of questions and the terminal prompt for user answers."""

import asyncio
import threading
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from .models import Question


def render_question(question: Question, console: Optional[Console] = None) -> None:
	"""Print a question as a panel."""
	console = console or Console()

	lines = []
	if question.context:
		lines.append("[bold]Context:[/bold]")
		lines.append(question.context)
		lines.append("")

	lines.append("[bold]Question:[/bold]")
	lines.append(question.question or "[dim](no question text)[/dim]")

	if question.options:
		lines.append("")
		lines.append("[bold]Options:[/bold]")
		for option in question.options:
			lines.append(f"  {option}")

	console.print(Panel(
		"\n".join(lines),
		title=f"Question from: {question.from_agent or 'Unknown Agent'}",
		border_style="yellow",
	))


def ask_user(question: Question, console: Optional[Console] = None) -> str:
	"""Show the question and read an answer from the terminal."""
	console = console or Console()
	render_question(question, console)
	return Prompt.ask("Your answer", console=console, default="", show_default=False).strip()


async def ask_user_async(question: Question, console: Optional[Console] = None) -> str:
	"""ask_user without blocking the event loop.

	The prompt runs in a daemon thread rather than the default executor, so
	cancelling the await lets the loop shut down without waiting for input.
	"""
	loop = asyncio.get_running_loop()
	answer: asyncio.Future = loop.create_future()

	def settle(result: Optional[str], error: Optional[BaseException]) -> None:
		if answer.done():
			return
		if error is not None:
			answer.set_exception(error)
		else:
			answer.set_result(result)

	def prompt() -> None:
		try:
			result, error = ask_user(question, console), None
		except Exception as e:
			result, error = None, e
		try:
			loop.call_soon_threadsafe(settle, result, error)
		except RuntimeError:
			# Loop already closed; nobody is waiting for this answer
			pass

	threading.Thread(target=prompt, name="answer-prompt", daemon=True).start()
	return await answer
