"""Static registry of what each provider kind can read and write."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from disputesync.domain.errors import CapabilityError, UnknownConnection
from disputesync.domain.model.enums import Entity, Operation, OutboundAction
from disputesync.domain.providers import ACTION_ENTITIES

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from disputesync.domain.model.connection import CapabilityMatrix, Connection
    from disputesync.domain.providers import ProviderDescriptor

log = getLogger(__name__)


class CapabilityRegistry:
    """Lookup over provider descriptors, built once at startup.

    Nothing here touches the network: an undeclared operation fails fast with
    ``CapabilityError`` instead of being tried against the provider.
    """

    def __init__(self, descriptors: Iterable[ProviderDescriptor]) -> None:
        self._descriptors: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.kind in self._descriptors:
                raise ValueError(f"Duplicate provider descriptor: {descriptor.kind}")
            self._descriptors[descriptor.kind] = descriptor
        log.debug("Capability registry loaded %d provider kinds", len(self._descriptors))

    def kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self._descriptors))

    def descriptor(self, adapter_kind: str) -> ProviderDescriptor:
        try:
            return self._descriptors[adapter_kind]
        except KeyError as exc:
            raise UnknownConnection(f"Unknown adapter kind: {adapter_kind}") from exc

    def capabilities_of(self, adapter_kind: str) -> CapabilityMatrix:
        declared = self.descriptor(adapter_kind).capabilities
        return {
            entity.value: {
                Operation.READ.value: Operation.READ in declared.get(entity, frozenset()),
                Operation.WRITE.value: Operation.WRITE in declared.get(entity, frozenset()),
            }
            for entity in Entity
        }

    def narrowed(
        self,
        adapter_kind: str,
        overrides: Mapping[str, Mapping[str, bool]] | None = None,
    ) -> CapabilityMatrix:
        """Per-connection matrix; overrides may only switch declared operations off."""

        matrix = self.capabilities_of(adapter_kind)
        for entity, flags in (overrides or {}).items():
            if entity not in matrix:
                raise CapabilityError(f"Unknown capability entity: {entity}")
            for operation, enabled in flags.items():
                if operation not in matrix[entity]:
                    raise CapabilityError(f"Unknown capability operation: {operation}")
                if enabled and not matrix[entity][operation]:
                    raise CapabilityError(
                        f"{adapter_kind} does not support {operation} on {entity}"
                    )
                matrix[entity][operation] = matrix[entity][operation] and enabled
        return matrix

    def require(self, adapter_kind: str, entity: Entity, operation: Operation) -> None:
        declared = self.descriptor(adapter_kind).capabilities.get(entity, frozenset())
        if operation not in declared:
            raise CapabilityError(f"{adapter_kind} does not declare {operation} on {entity}")

    def allows(self, connection: Connection, entity: Entity, operation: Operation) -> bool:
        try:
            self.require(connection.adapter_kind, entity, operation)
        except (CapabilityError, UnknownConnection):
            return False
        return connection.allows(entity.value, operation.value)

    def require_for(self, connection: Connection, entity: Entity, operation: Operation) -> None:
        self.require(connection.adapter_kind, entity, operation)
        if not connection.allows(entity.value, operation.value):
            raise CapabilityError(
                f"Connection {connection.connection_id} has {operation} on {entity} disabled"
            )

    def supports_action(self, connection: Connection, action: OutboundAction) -> bool:
        return self.allows(connection, ACTION_ENTITIES[action], Operation.WRITE)
