#!/usr/bin/env python3
#
# certproxy/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Authentication API routes and dependencies."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..db.store import CertificateStore
from ..models.records import User
from ..models.users import LoginRequest, TokenResponse, UserPublic
from ..utils.crypto import DUMMY_PASSWORD_HASH, generate_token_expiry, new_token, verify_password
from ..utils.deps import get_store
from ..utils.rate_limit import RATE_LIMIT_AUTH, limiter
from .response import ok_response

_log = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)

router = APIRouter(tags=["auth"])


def _client_ip(request: Request) -> str:
	return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Authentication Dependencies
# ---------------------------------------------------------------------------

async def get_current_user(
	credentials: HTTPAuthorizationCredentials | None = Depends(_security),
	store: CertificateStore = Depends(get_store),
) -> User:
	"""FastAPI dependency that enforces bearer-token authentication.

	Every authenticated request slides the token expiry forward (capped at
	the token's absolute lifetime).
	"""
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")
	token = credentials.credentials
	user = await store.get_user_by_token(token)
	if user is None:
		raise HTTPException(status_code=401, detail="Invalid or expired token")
	await store.refresh_auth_token(token)
	return user


def require_admin(user: User = Depends(get_current_user)) -> User:
	if not user.is_admin:
		raise HTTPException(status_code=403, detail="Admin privileges required")
	return user


# ---------------------------------------------------------------------------
# Auth Endpoints
# ---------------------------------------------------------------------------

@router.post("/login")
@limiter.limit(RATE_LIMIT_AUTH)
async def login(
	request: Request,
	response: Response,
	payload: LoginRequest,
	store: CertificateStore = Depends(get_store),
):
	"""Authenticate a user and return a bearer token."""
	client_ip = _client_ip(request)
	user = await store.get_user_by_username(payload.username)

	# Hash even for unknown users so timing does not reveal valid names
	password_hash = user.password_hash if user else DUMMY_PASSWORD_HASH
	password_valid = await asyncio.to_thread(verify_password, payload.password, password_hash)

	if not user or not password_valid:
		_log.info("LOGIN_FAILED ip=%s username=%s", client_ip, payload.username)
		raise HTTPException(status_code=401, detail="Invalid username or password")
	if not user.is_active:
		_log.info("LOGIN_INACTIVE ip=%s username=%s", client_ip, payload.username)
		raise HTTPException(status_code=403, detail="Account disabled")

	token = new_token()
	expires_at, max_expires_at = generate_token_expiry()
	await store.create_auth_token(user.id, token, expires_at, max_expires_at)
	await store.update_last_login(user.id)

	_log.info("LOGIN_SUCCESS ip=%s username=%s", client_ip, payload.username)
	data = TokenResponse(token=token, expires_at=expires_at).model_dump(mode="json")
	return ok_response(data=data)


@router.post("/logout")
async def logout(
	credentials: HTTPAuthorizationCredentials | None = Depends(_security),
	store: CertificateStore = Depends(get_store),
):
	"""Invalidate the presented token. Unknown tokens are ignored."""
	if credentials and credentials.credentials:
		await store.delete_auth_token(credentials.credentials)
	return ok_response(message="Logged out")


@router.get("/me")
async def get_current_user_info(user: User = Depends(get_current_user)):
	return ok_response(data=UserPublic.from_record(user).model_dump(mode="json"))
