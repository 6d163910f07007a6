"""
FastAPI dependencies — hand route handlers the wired services.

``main.create_app`` stores a ``Services`` bundle on ``app.state``.
"""

from __future__ import annotations

from fastapi import Request

from backend.app.alerts.alert_service import AlertingPipeline
from backend.app.alerts.zones import ZoneRegistry
from backend.app.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_pipeline(request: Request) -> AlertingPipeline:
    return get_services(request).pipeline


def get_registry(request: Request) -> ZoneRegistry:
    return get_services(request).registry
