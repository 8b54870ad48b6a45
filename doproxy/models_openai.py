# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Pydantic models for the OpenAI-compatible documents the proxy serves itself.

Chat completion bodies are forwarded as plain dicts and are not modeled here;
the transcript engine accepts anything and repairs it.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OpenAIModel(BaseModel):
    """
    One entry of the /v1/models list.

    Extra fields reported by the upstream (created, permissions, ...) are
    passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "model"
    owned_by: str = "digitalocean"

    @field_validator("object", "owned_by", mode="before")
    @classmethod
    def _null_to_default(cls, value, info):
        # Some upstream entries report these as null.
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class ModelList(BaseModel):
    """Response of GET /v1/models."""

    object: str = "list"
    data: List[OpenAIModel] = Field(default_factory=list)


class HealthStatus(BaseModel):
    """Response of GET /health."""

    status: str = "healthy"
    version: str


class RootStatus(BaseModel):
    """Response of GET /."""

    status: str = "running"
    message: str
    target: str
