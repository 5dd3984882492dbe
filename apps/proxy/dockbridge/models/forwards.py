"""Pydantic models for the bridge diagnostics API."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ForwardRef(BaseModel):
    port: str
    local_addr: str
    remote_addr: str
    state: str
    error: Optional[str] = None


class ForwardList(BaseModel):
    remote_host: str
    forwards: list[ForwardRef] = Field(default_factory=list)
