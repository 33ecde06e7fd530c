"""Configuration system using platformdirs for the user-level config file."""

import json
import os
import shlex
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import platformdirs
from pydantic import BaseModel, ConfigDict, Field

from .atomic import atomic_write_text

APP_NAME = "team-orchestrator"

ORCHESTRATOR_DIR = ".orchestrator"


@dataclass
class Config:
	"""Storage roots and agent settings, passed explicitly to every component."""

	project_dir: Path = field(default_factory=Path.cwd)
	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))

	# User-configurable
	agent_command: list[str] = field(default_factory=lambda: ["claude"])
	grace_period: float = 5.0
	parallel: bool = True
	log_level: str = "INFO"

	# Derived paths
	orchestrator_dir: Path = field(init=False)
	state_file: Path = field(init=False)
	settings_file: Path = field(init=False)
	questions_dir: Path = field(init=False)
	sessions_dir: Path = field(init=False)
	log_dir: Path = field(init=False)
	pid_file: Path = field(init=False)
	prd_file: Path = field(init=False)
	architecture_file: Path = field(init=False)
	prompts_dir: Path = field(init=False)
	readme_file: Path = field(init=False)

	def __post_init__(self) -> None:
		self.project_dir = Path(self.project_dir)
		self.orchestrator_dir = self.project_dir / ORCHESTRATOR_DIR
		self.state_file = self.orchestrator_dir / "state.json"
		self.settings_file = self.orchestrator_dir / "config.json"
		self.questions_dir = self.orchestrator_dir / "questions"
		self.sessions_dir = self.orchestrator_dir / "sessions"
		self.log_dir = self.orchestrator_dir / "logs"
		self.pid_file = self.orchestrator_dir / "orchestrator.pid"
		self.prd_file = self.orchestrator_dir / "prd.md"
		self.architecture_file = self.orchestrator_dir / "architecture.md"
		self.prompts_dir = self.project_dir / "prompts"
		self.readme_file = self.project_dir / "README.md"

	@property
	def po_prompt_file(self) -> Path:
		return self.prompts_dir / "po.md"

	@property
	def tech_lead_prompt_file(self) -> Path:
		return self.prompts_dir / "tech-lead.md"

	@property
	def dev_prompt_file(self) -> Path:
		return self.prompts_dir / "dev.md"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.orchestrator_dir.mkdir(parents=True, exist_ok=True)
		self.questions_dir.mkdir(parents=True, exist_ok=True)
		self.sessions_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if key == "project_dir":
			config.project_dir = Path(os.path.expanduser(val))
		elif key == "agent_command":
			config.agent_command = shlex.split(val) if isinstance(val, str) else list(val)
		elif key in {"grace_period", "parallel", "log_level"}:
			setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def _apply_env_overrides(config: Config) -> Config:
	"""Apply TEAM_ORCHESTRATOR_* environment variable overrides."""
	project_dir = os.getenv("TEAM_ORCHESTRATOR_PROJECT_DIR")
	if project_dir:
		config.project_dir = Path(project_dir)

	agent_command = os.getenv("TEAM_ORCHESTRATOR_AGENT_COMMAND")
	if agent_command:
		config.agent_command = shlex.split(agent_command)

	grace_period = os.getenv("TEAM_ORCHESTRATOR_GRACE_PERIOD")
	if grace_period:
		config.grace_period = float(grace_period)

	log_level = os.getenv("TEAM_ORCHESTRATOR_LOG_LEVEL")
	if log_level:
		config.log_level = log_level

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def load_config(project_dir: Optional[Path] = None) -> Config:
	"""Load config with precedence: env vars > config.toml > defaults.

	An explicit project_dir wins over everything else.
	"""
	config_dir = os.getenv("TEAM_ORCHESTRATOR_CONFIG_DIR")
	config = Config(config_dir=Path(config_dir)) if config_dir else Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	if project_dir is not None:
		config.project_dir = Path(project_dir)
		config.__post_init__()
	config.ensure_dirs()
	return config


class RepoSettings(BaseModel):
	"""Repository binding written by `init` to .orchestrator/config.json."""

	model_config = ConfigDict(populate_by_name=True)

	repo_url: str = Field(alias="repoUrl")
	token: str = Field(default="")
	created_at: str = Field(
		default_factory=lambda: datetime.now(timezone.utc).isoformat(),
		alias="createdAt",
	)

	def resolved_token(self) -> Optional[str]:
		"""Stored token, falling back to GITHUB_TOKEN."""
		return self.token or os.getenv("GITHUB_TOKEN") or None


def load_repo_settings(config: Config) -> Optional[RepoSettings]:
	"""Read repository settings, or None if `init` has not been run."""
	if not config.settings_file.exists():
		return None
	data = json.loads(config.settings_file.read_text(encoding="utf-8"))
	return RepoSettings.model_validate(data)


def save_repo_settings(config: Config, settings: RepoSettings) -> Path:
	"""Write repository settings atomically."""
	content = json.dumps(settings.model_dump(by_alias=True), indent=2)
	atomic_write_text(config.settings_file, content)
	return config.settings_file
