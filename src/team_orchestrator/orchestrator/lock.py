"""PID lock for the single driver instance allowed per project.

`stop` reads the holder's PID from the same file to signal it.
"""

import os
import signal
from pathlib import Path
from types import TracebackType
from typing import Optional

from ..errors import OrchestratorError


class OrchestratorLock:
	"""PID-based lock file.

	Usage:
		with OrchestratorLock(config.pid_file):
			await orchestrator.run()
	"""

	def __init__(self, lock_path: Path) -> None:
		self.lock_path = Path(lock_path)

	def acquire(self) -> bool:
		"""Take the lock unless a live process holds it. Stale locks are replaced."""
		holder_pid = self.get_holder_pid()
		if holder_pid is not None and holder_pid != os.getpid() and is_process_running(holder_pid):
			return False

		self.lock_path.parent.mkdir(parents=True, exist_ok=True)
		self.lock_path.write_text(str(os.getpid()))
		return True

	def release(self) -> None:
		"""Release the lock if we hold it."""
		if self.get_holder_pid() == os.getpid():
			self.lock_path.unlink(missing_ok=True)

	def get_holder_pid(self) -> Optional[int]:
		if not self.lock_path.exists():
			return None
		try:
			return int(self.lock_path.read_text().strip())
		except ValueError:
			return None

	def signal_holder(self, signum: int = signal.SIGTERM) -> Optional[int]:
		"""Send a signal to the running holder. Returns its PID, or None if nobody holds the lock."""
		holder_pid = self.get_holder_pid()
		if holder_pid is None or not is_process_running(holder_pid):
			return None
		os.kill(holder_pid, signum)
		return holder_pid

	def __enter__(self) -> "OrchestratorLock":
		if not self.acquire():
			raise OrchestratorError(
				f"Orchestrator already running (PID: {self.get_holder_pid()})"
			)
		return self

	def __exit__(
		self,
		exc_type: type[BaseException] | None,
		exc_val: BaseException | None,
		exc_tb: TracebackType | None,
	) -> None:
		self.release()


def is_process_running(pid: int) -> bool:
	try:
		os.kill(pid, 0)  # Signal 0 doesn't kill, just checks existence
		return True
	except ProcessLookupError:
		return False
	except PermissionError:
		return True
