#!/usr/bin/env python3
#
# certproxy/utils/files.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Filesystem helpers for files nginx reads."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, content: str, mode: int = 0o644) -> None:
	"""Replace ``path`` with ``content`` in one rename.

	The data is fsync'd in a sibling temp file first, so a concurrent
	``nginx -t`` sees either the old server block or the new one.
	"""
	path.parent.mkdir(parents=True, exist_ok=True)
	fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
	tmp = Path(tmp_name)
	try:
		with os.fdopen(fd, "w", encoding="utf-8") as fh:
			fh.write(content)
			fh.flush()
			os.fsync(fh.fileno())
		tmp.chmod(mode)
		tmp.replace(path)
	except BaseException:
		tmp.unlink(missing_ok=True)
		raise


def unlink_if_exists(path: Path) -> bool:
	"""Remove a file or symlink; False when there was nothing to remove."""
	try:
		path.unlink()
	except FileNotFoundError:
		return False
	return True
