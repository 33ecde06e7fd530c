"""CLI for team-orchestrator: init, run, resume, stop, status, answer and session commands."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import Config, RepoSettings, load_config, load_repo_settings, save_repo_settings
from .errors import OrchestratorError
from .github_client import IssueTracker, parse_repo_url
from .logging_config import setup_logging
from .orchestrator.driver import OrchestrationResult, Orchestrator
from .orchestrator.lock import OrchestratorLock
from .questions.display import ask_user
from .questions.store import QuestionStore
from .state.models import SessionStatus
from .state.store import StateManager, StateStore

console = Console()


def _config(args: argparse.Namespace) -> Config:
	project_dir = getattr(args, "project_dir", None)
	config = load_config(Path(project_dir) if project_dir else None)
	if getattr(args, "sequential", False):
		config.parallel = False
	return config


def _fail(message: str, hint: Optional[str] = None) -> None:
	console.print(f"[red]Error:[/red] {message}")
	if hint:
		console.print(hint)
	sys.exit(1)


def _load_state(config: Config) -> StateManager:
	if not config.state_file.exists():
		_fail("No saved state found.", "Run: team-orchestrator run")
	return StateManager(StateStore(config.state_file))


def cmd_init(args: argparse.Namespace) -> None:
	"""Bind the project to a GitHub repository."""
	if "github.com" not in args.repo_url:
		_fail("Invalid repository URL. Must be a GitHub URL.")
	try:
		parse_repo_url(args.repo_url)
	except OrchestratorError as e:
		_fail(str(e))

	config = _config(args)
	config.ensure_dirs()
	path = save_repo_settings(config, RepoSettings(repo_url=args.repo_url, token=args.token or ""))

	console.print(f"Initialized orchestrator for: {args.repo_url}")
	console.print(f"Config saved to: {path}")


async def _orchestrate(config: Config, tracker: IssueTracker, resuming: bool) -> OrchestrationResult:
	orchestrator = Orchestrator(config, issue_source=tracker, console=console)
	orchestrator.install_signal_handlers()
	try:
		if resuming:
			return await orchestrator.resume()
		return await orchestrator.run()
	finally:
		orchestrator.remove_signal_handlers()


def _drive(config: Config, resuming: bool) -> None:
	settings = load_repo_settings(config)
	if settings is None:
		_fail("Orchestrator not initialized.", "Run: team-orchestrator init <repo-url> --token <token>")

	console.print(f"Orchestrating for: {settings.repo_url}")
	try:
		tracker = IssueTracker.from_config(config)
		with OrchestratorLock(config.pid_file):
			result = asyncio.run(_orchestrate(config, tracker, resuming))
	except OrchestratorError as e:
		_fail(str(e))

	if result.success:
		console.print("\n[green]Orchestration completed successfully![/green]")
		return

	console.print(f"\n[red]Orchestration did not complete:[/red] {result.error}")
	console.print(f"Stopped at phase: {result.final_phase.value}")
	sys.exit(1)


def cmd_run(args: argparse.Namespace) -> None:
	"""Start (or continue) orchestration from the persisted phase."""
	_drive(_config(args), resuming=False)


def cmd_resume(args: argparse.Namespace) -> None:
	"""Resume after a stop or crash: stale sessions are retried, a pending question is answered first."""
	config = _config(args)
	if not config.state_file.exists():
		_fail("No saved state found.", "Run: team-orchestrator run to start fresh.")
	_drive(config, resuming=True)


def cmd_stop(args: argparse.Namespace) -> None:
	"""Ask the running orchestrator to terminate its agents and save state."""
	config = _config(args)
	pid = OrchestratorLock(config.pid_file).signal_holder()
	if pid is None:
		_fail("No running orchestrator found.")
	console.print(f"Stop signal sent to orchestrator (PID: {pid})")


def cmd_status(args: argparse.Namespace) -> None:
	"""Show the current orchestration state."""
	config = _config(args)
	settings = load_repo_settings(config)
	if settings is None:
		console.print("Status: Not initialized")
		console.print("Run: team-orchestrator init <repo-url> --token <token>")
		return

	if not config.state_file.exists():
		console.print("Status: Initialized but not running")
		console.print(f"Repository: {settings.repo_url}")
		console.print("Run: team-orchestrator run to start")
		return

	state = StateManager(StateStore(config.state_file)).state
	holder = OrchestratorLock(config.pid_file).get_holder_pid()

	console.print("[bold]=== Orchestrator Status ===[/bold]")
	console.print(f"Repository:    {settings.repo_url}")
	console.print(f"Phase:         {state.phase.value}")
	console.print(f"Current agent: {state.current_agent or 'none'}")
	console.print(f"Driver PID:    {holder or 'not running'}")

	if state.is_blocked:
		console.print("Blocked:       [yellow]yes[/yellow]")
		console.print(f"  Blocked agent: {state.blocked.blocked_agent.value}")
		console.print(f"  Waiting for:   {state.blocked.waiting_for.value}")
		console.print(f"  Question file: {state.blocked.question_file}")
	else:
		console.print("Blocked:       no")

	if state.dev_sessions:
		table = Table(title=f"Dev Sessions ({len(state.dev_sessions)})")
		table.add_column("Area", style="bold")
		table.add_column("Status")
		table.add_column("Tickets")
		for session in state.dev_sessions:
			table.add_row(
				session.area,
				session.status.value,
				", ".join(f"#{t}" for t in session.tickets),
			)
		console.print(table)
	else:
		console.print("Dev sessions:  0")

	console.print(f"Last updated:  {state.last_updated}")


def _resolve_question_path(store: QuestionStore, name: str) -> Path:
	path = Path(name)
	if not path.is_absolute() and not path.exists():
		path = store.questions_dir / path
	if path.suffix != ".md":
		path = path.with_suffix(".md")
	return path


def cmd_answer(args: argparse.Namespace) -> None:
	"""Answer a question from the terminal (default: the latest unanswered one)."""
	config = _config(args)
	store = QuestionStore(config.questions_dir)

	if args.question:
		question_file = _resolve_question_path(store, args.question)
	else:
		question_file = store.find_latest_unanswered()
		if question_file is None:
			console.print("No unanswered questions.")
			return

	try:
		question = store.parse_question(question_file)
		if store.has_response(question_file):
			_fail(f"{question_file.name} is already answered.")
		text = args.text if args.text is not None else ask_user(question, console)
		store.write_response(question_file, text)
	except OrchestratorError as e:
		_fail(str(e))

	console.print(f"Answered {question_file.name}")


def cmd_session(args: argparse.Namespace) -> None:
	"""Operator intervention on a single dev session."""
	config = _config(args)
	state = _load_state(config)
	try:
		if args.session_action == "retry":
			state.update_dev_session(args.area, status=SessionStatus.PENDING)
			console.print(f"Session {args.area} reset to pending. Run: team-orchestrator resume")
		elif args.session_action == "remove":
			state.remove_dev_session(args.area)
			console.print(f"Session {args.area} removed")
	except OrchestratorError as e:
		_fail(str(e))


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	load_dotenv()

	parser = argparse.ArgumentParser(
		prog="team-orchestrator",
		description="Drive a PO, a tech lead and parallel developer agents through a resumable workflow",
	)
	parser.add_argument(
		"--project-dir",
		type=str,
		default=None,
		help="Project root (default: current directory)",
	)
	subparsers = parser.add_subparsers(dest="command")

	# init
	init_parser = subparsers.add_parser("init", help="Initialize orchestrator for a repository")
	init_parser.add_argument("repo_url", help="GitHub repository URL")
	init_parser.add_argument("--token", type=str, default=None, help="GitHub personal access token")
	init_parser.set_defaults(func=cmd_init)

	# run
	run_parser = subparsers.add_parser("run", help="Start orchestration")
	run_parser.add_argument("--sequential", action="store_true", help="Run dev sessions one at a time")
	run_parser.set_defaults(func=cmd_run)

	# resume
	resume_parser = subparsers.add_parser("resume", help="Resume orchestration from saved state")
	resume_parser.add_argument("--sequential", action="store_true", help="Run dev sessions one at a time")
	resume_parser.set_defaults(func=cmd_resume)

	# stop
	stop_parser = subparsers.add_parser("stop", help="Stop all running agents and save state")
	stop_parser.set_defaults(func=cmd_stop)

	# status
	status_parser = subparsers.add_parser("status", help="Show current orchestration state")
	status_parser.set_defaults(func=cmd_status)

	# answer
	answer_parser = subparsers.add_parser("answer", help="Answer a pending question")
	answer_parser.add_argument("question", nargs="?", default=None, help="Question file or name (default: latest)")
	answer_parser.add_argument("--text", type=str, default=None, help="Answer text (default: prompt)")
	answer_parser.set_defaults(func=cmd_answer)

	# session
	session_parser = subparsers.add_parser("session", help="Retry or remove a dev session")
	session_subparsers = session_parser.add_subparsers(dest="session_action", required=True)
	retry_parser = session_subparsers.add_parser("retry", help="Mark a session pending again")
	retry_parser.add_argument("area")
	remove_parser = session_subparsers.add_parser("remove", help="Drop a session")
	remove_parser.add_argument("area")
	session_parser.set_defaults(func=cmd_session)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = _config(args)
	setup_logging(config.log_dir, config.log_level)

	args.func(args)


if __name__ == "__main__":
	main()
