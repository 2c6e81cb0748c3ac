#!/usr/bin/env python3
#
# certproxy/api/proxies.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Proxy host API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..models.proxies import ProxyCreate, ProxyPublic, ProxyUpdate
from ..models.records import User
from ..services.proxies import ProxyService
from ..utils.deps import get_proxy_service
from .auth import get_current_user
from .response import ok_response

router = APIRouter(tags=["proxies"])


@router.get("")
async def list_proxies(
	user: User = Depends(get_current_user),
	service: ProxyService = Depends(get_proxy_service),
):
	proxies = await service.list_proxies(user.id)
	return ok_response(data=[ProxyPublic.from_record(p).model_dump(mode="json") for p in proxies])


@router.post("", status_code=201)
async def create_proxy(
	payload: ProxyCreate,
	user: User = Depends(get_current_user),
	service: ProxyService = Depends(get_proxy_service),
):
	"""Create a proxy host; nginx problems are reported as warnings."""
	result = await service.create(user.id, payload)
	return ok_response(
		message="Proxy created",
		data=ProxyPublic.from_record(result.proxy).model_dump(mode="json"),
		warnings=result.warnings,
	)


@router.get("/{proxy_id}")
async def get_proxy(
	proxy_id: int,
	user: User = Depends(get_current_user),
	service: ProxyService = Depends(get_proxy_service),
):
	proxy = await service.get(proxy_id, user.id)
	return ok_response(data=ProxyPublic.from_record(proxy).model_dump(mode="json"))


@router.put("/{proxy_id}")
async def update_proxy(
	proxy_id: int,
	payload: ProxyUpdate,
	user: User = Depends(get_current_user),
	service: ProxyService = Depends(get_proxy_service),
):
	result = await service.update(proxy_id, user.id, payload)
	return ok_response(
		message="Proxy updated",
		data=ProxyPublic.from_record(result.proxy).model_dump(mode="json"),
		warnings=result.warnings,
	)


@router.delete("/{proxy_id}")
async def delete_proxy(
	proxy_id: int,
	user: User = Depends(get_current_user),
	service: ProxyService = Depends(get_proxy_service),
):
	"""Delete a proxy host together with its certificate rows."""
	result = await service.delete(proxy_id, user.id)
	return ok_response(message="Proxy deleted", warnings=result.warnings)
