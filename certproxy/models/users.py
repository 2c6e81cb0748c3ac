#!/usr/bin/env python3
#
# certproxy/models/users.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Login payloads and the public view of an API user."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .records import User


class LoginRequest(BaseModel):
	username: str = Field(..., min_length=1, max_length=64)
	password: str = Field(..., min_length=1, max_length=256)

	@field_validator("username")
	@classmethod
	def username_lookup_form(cls, v: str) -> str:
		# usernames are stored lowercase
		return v.strip().lower()


class TokenResponse(BaseModel):
	"""Bearer token handed out by ``POST /api/auth/login``.

	``expires_at`` is the sliding expiry; every authenticated request pushes
	it forward up to the token's absolute lifetime.
	"""
	token: str
	token_type: Literal["Bearer"] = "Bearer"
	expires_at: datetime


class UserPublic(BaseModel):
	id: int
	username: str
	is_admin: bool
	created_at: datetime
	last_login_at: datetime | None = None

	@classmethod
	def from_record(cls, user: User) -> "UserPublic":
		return cls(
			id=user.id,
			username=user.username,
			is_admin=user.is_admin,
			created_at=user.created_at,
			last_login_at=user.last_login_at,
		)
