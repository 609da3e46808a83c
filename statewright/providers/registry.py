"""Type-tag dispatch from resource type to provider implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..exceptions import ValidationError

if TYPE_CHECKING:
    from . import ResourceProvider, ResourceSchema

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps a resource type tag to the provider that implements it."""

    def __init__(self) -> None:
        self._providers: dict[str, ResourceProvider] = {}

    def register(self, resource_type: str, provider: ResourceProvider) -> None:
        if resource_type in self._providers:
            raise ValueError(f"Provider already registered for type '{resource_type}'")
        logger.debug("Registered provider %s for type '%s'", type(provider).__name__, resource_type)
        self._providers[resource_type] = provider

    def get(self, resource_type: str) -> ResourceProvider:
        try:
            return self._providers[resource_type]
        except KeyError:
            raise ValidationError(f"No provider registered for resource type '{resource_type}'") from None

    def schema(self, resource_type: str) -> ResourceSchema:
        return self.get(resource_type).schema

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._providers

    def types(self) -> list[str]:
        return sorted(self._providers)
