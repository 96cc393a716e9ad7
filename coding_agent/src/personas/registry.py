# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Typed persona registry.

Personas are validated once, when the registry is built, so that a bad
persona file fails at startup rather than in the middle of a conversation.
"""

import json
import logging

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .patterns import matches_any, tool_schema_name
from ..config import ModelTier
from ..errors import ConfigurationError, UnknownPersonaError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class Persona(BaseModel):
    """A named role configuration applied to a conversation session."""

    name: str
    system_message: str
    description: str = ""
    level: ModelTier = ModelTier.BASE
    excluded_tools: list[str] = Field(default_factory=list)
    included_tools: Optional[list[str]] = None
    reminder: Optional[str] = None
    parsing_tools: list[dict[str, Any]] = Field(
        default_factory=list,
        description="OpenAI function schemas used to signal a structured decision",
    )

    @field_validator("parsing_tools")
    @classmethod
    def _check_parsing_tools(cls, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for tool in tools:
            if not tool_schema_name(tool):
                raise ValueError("parsing tool schemas must define function.name")
        return tools

    @model_validator(mode="after")
    def _check_tool_filters(self) -> "Persona":
        if self.included_tools is not None and self.excluded_tools:
            raise ValueError(
                f"Persona {self.name}: included_tools and excluded_tools are mutually exclusive"
            )
        return self

    @property
    def parsing_tool_names(self) -> list[str]:
        return [tool_schema_name(t) for t in self.parsing_tools]

    @property
    def parsing_only_tools(self) -> list[dict[str, Any]]:
        return [t for t in self.parsing_tools if t.get("parsing_only") is True]

    def is_tool_included(self, tool_name: str) -> bool:
        if self.included_tools is not None:
            return matches_any(tool_name, self.included_tools)
        return not matches_any(tool_name, self.excluded_tools)


class PersonaRegistry:
    """Resolves role names to validated Persona descriptors."""

    def __init__(self, personas: Iterable[Persona] = ()):
        self._personas: dict[str, Persona] = {}
        for persona in personas:
            self.register(persona)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> "PersonaRegistry":
        """Build a registry from ``{role_name: persona_fields}``."""
        personas = []
        for name, fields in data.items():
            try:
                personas.append(Persona.model_validate({"name": name, **fields}))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid persona '{name}': {e}") from e
        return cls(personas)

    @classmethod
    def from_json_file(cls, path: Path | str) -> "PersonaRegistry":
        """Load personas from a JSON file holding ``{"personas": {name: {...}}}``."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read personas file {path}: {e}") from e
        registry = cls.from_dict(data.get("personas", data))
        logger.info(f"Loaded {len(registry)} personas from {path}")
        return registry

    def register(self, persona: Persona) -> None:
        if persona.name in self._personas:
            logger.warning(f"Replacing persona definition for role '{persona.name}'")
        self._personas[persona.name] = persona

    def resolve(self, role: str) -> Persona:
        persona = self._personas.get(role)
        if persona is None:
            raise UnknownPersonaError(role)
        return persona

    def has_role(self, role: str) -> bool:
        return role in self._personas

    def roles(self) -> list[str]:
        return list(self._personas)

    def get_system_message(self, role: str) -> str:
        return self.resolve(role).system_message

    def get_level(self, role: str) -> ModelTier:
        return self.resolve(role).level

    def get_reminder(self, role: str) -> Optional[str]:
        return self.resolve(role).reminder

    def get_parsing_tools(self, role: str) -> list[dict[str, Any]]:
        return list(self.resolve(role).parsing_tools)

    def is_tool_included(self, role: str, tool_name: str) -> bool:
        return self.resolve(role).is_tool_included(tool_name)

    def __len__(self) -> int:
        return len(self._personas)

    def __contains__(self, role: str) -> bool:
        return role in self._personas
