#!/usr/bin/env python3
#
# certproxy/utils/exec.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Awaitable subprocess execution for nginx and certbot."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, NamedTuple, Protocol

_log = logging.getLogger(__name__)

__all__ = ["EXEC_TIMEOUT", "CommandRunner", "ExecResult", "run_exec"]

# Default timeout for short control commands (nginx -t, nginx -s reload)
EXEC_TIMEOUT = 30.0


class ExecResult(NamedTuple):
	"""Structured outcome of one external command."""
	code: int
	stdout: str
	stderr: str

	@property
	def ok(self) -> bool:
		return self.code == 0

	def last_error_line(self, limit: int = 200) -> str:
		"""Last non-empty line of stderr (or stdout), for log-friendly messages."""
		text = (self.stderr or self.stdout).strip()
		if not text:
			return f"exit code {self.code}"
		return text.splitlines()[-1][:limit]


class CommandRunner(Protocol):
	def __call__(self, *cmd: str, timeout: float = ...) -> Awaitable[ExecResult]: ...


async def run_exec(*cmd: str, timeout: float = EXEC_TIMEOUT) -> ExecResult:
	"""Run ``cmd`` without a shell and collect its output.

	Never raises for the command itself: a binary that cannot be started or
	does not finish within ``timeout`` yields ``code == -1``, so a hung
	certbot is handled like one that exited non-zero.
	"""
	try:
		proc = await asyncio.create_subprocess_exec(
			*cmd,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
	except OSError as exc:
		_log.warning("EXEC_ERROR %s could not be started: %s", cmd[0], exc)
		return ExecResult(-1, "", str(exc))

	try:
		out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		_log.warning("EXEC_TIMEOUT %s %s did not finish within %.1fs", cmd[0], cmd[1] if len(cmd) > 1 else "", timeout)
		return ExecResult(-1, "", f"Command timed out after {timeout}s")
	finally:
		if proc.returncode is None:
			with contextlib.suppress(ProcessLookupError):
				proc.kill()
			await proc.wait()

	return ExecResult(proc.returncode, out.decode("utf-8", errors="replace"), err.decode("utf-8", errors="replace"))
