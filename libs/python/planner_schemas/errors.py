"""Uniform failure body returned by every Church Planner API."""

from __future__ import annotations

from typing import Any
from pydantic import BaseModel


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    details: Any = None
