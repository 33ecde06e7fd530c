"""Crash-safe file writes: write a temp file next to the target, then rename or link."""

import os
import tempfile
from pathlib import Path


def _write_temp(path: Path, content: str) -> str:
	"""Write content to a fsynced temp file beside path. Returns the temp file name.

	The temp file lives in the same directory (same filesystem) and starts
	with a dot so directory scans for real artifacts never match it.
	"""
	path.parent.mkdir(parents=True, exist_ok=True)
	fd, tmp_name = tempfile.mkstemp(
		dir=str(path.parent),
		prefix=f".{path.name}.",
		suffix=".tmp",
	)
	try:
		with os.fdopen(fd, "w", encoding="utf-8") as f:
			f.write(content)
			f.flush()
			os.fsync(f.fileno())
	except BaseException:
		_discard(tmp_name)
		raise
	return tmp_name


def _discard(tmp_name: str) -> None:
	try:
		os.unlink(tmp_name)
	except FileNotFoundError:
		pass


def atomic_write_text(path: Path, content: str) -> Path:
	"""Replace path with content so readers see either the old or the new file."""
	path = Path(path)
	tmp_name = _write_temp(path, content)
	try:
		os.replace(tmp_name, path)
	except BaseException:
		_discard(tmp_name)
		raise
	return path


def atomic_create_text(path: Path, content: str) -> Path:
	"""Create path with content, failing if it already exists.

	The complete temp file is hard-linked into place, so readers never see
	a partial file and a concurrent writer that got there first is never
	overwritten.

	Raises:
		FileExistsError: path already exists
	"""
	path = Path(path)
	tmp_name = _write_temp(path, content)
	try:
		os.link(tmp_name, path)
	finally:
		_discard(tmp_name)
	return path
