"""Table and column mapping decisions and the resolver that computes them."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from dbtransfer.dialects import SQLDialect
from dbtransfer.exceptions import MappingError
from dbtransfer.models import Attribute, MappingType, NameCase
from dbtransfer.struct import DataContainer, DataManipulator, EntityContainer

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")
_NON_IDENTIFIER = re.compile(r"[^0-9A-Za-z_]+")


def transform_case(name: str, name_case: NameCase) -> str:
    """Apply a naming policy to a new target name."""
    name_case = NameCase(name_case)
    if name_case == NameCase.UPPER:
        return name.upper()
    if name_case == NameCase.LOWER:
        return name.lower()
    if name_case == NameCase.CAMEL:
        words = [w for w in _WORD_SPLIT.split(name) if w]
        if not words:
            return name
        head, tail = words[0], words[1:]
        if head.isupper():
            head = head.lower()
        else:
            head = head[0].lower() + head[1:]
        return head + "".join(w[0].upper() + w[1:].lower() for w in tail)
    if name_case == NameCase.UNDERSCORE:
        return _NON_IDENTIFIER.sub("_", name.strip())
    return name


def find_best_match(candidates: List[Attribute], name: str) -> Optional[Attribute]:
    """Case-aware match on name or label: an exact-case match wins over a case-insensitive one."""
    for candidate in candidates:
        if candidate.name == name:
            return candidate
    for candidate in candidates:
        if candidate.label_or_name == name:
            return candidate
    lowered = name.lower()
    for candidate in candidates:
        if lowered in (candidate.name.lower(), candidate.label_or_name.lower()):
            return candidate
    return None


class AttributeMapping:
    """Decision of how one source column maps to one target column."""

    def __init__(self, parent: "ContainerMapping", source: Optional[Attribute]):
        self.parent = parent
        self.source = source
        self.target: Optional[Attribute] = None
        self.target_name: Optional[str] = None
        self.target_type: Optional[str] = None
        self.mapping_type = MappingType.UNSPECIFIED
        self.transformer_id: Optional[str] = None
        self.transformer_properties: Dict[str, Any] = {}
        # Set by user or restored decisions; kept across re-resolution
        self.explicit = False
        # Target type shown as the source type after positional matching; listing only,
        # values are always converted by the target attribute's handler
        self.source_type_override: Optional[str] = None
        self.error: Optional[str] = None

    @property
    def source_name(self) -> str:
        return self.source.label_or_name if self.source is not None else ""

    @property
    def source_type(self) -> str:
        if self.source_type_override:
            return self.source_type_override
        return self.source.full_type_name if self.source is not None else ""

    @property
    def is_valid(self) -> bool:
        return self.mapping_type == MappingType.SKIP or self.mapping_type.is_valid

    def bind(self, target: Attribute) -> None:
        """Bind to an existing target attribute."""
        self.target = target
        self.target_name = target.name
        self.target_type = target.full_type_name
        self.mapping_type = MappingType.EXISTING
        self.error = None

    def set_transformer(self, transformer_id: Optional[str], properties: Optional[Dict[str, Any]] = None) -> None:
        self.transformer_id = transformer_id
        self.transformer_properties = dict(properties or {})

    def to_dict(self) -> Dict[str, Any]:
        """Persistable form of this decision."""
        data: Dict[str, Any] = {
            "targetName": self.target_name,
            "targetType": self.target_type,
            "mappingType": self.mapping_type.value,
        }
        # Callable properties (expression transformers) cannot be stored
        if self.transformer_id and not any(callable(v) for v in self.transformer_properties.values()):
            data["transformer"] = {
                "id": self.transformer_id,
                "properties": dict(self.transformer_properties),
            }
        return data

    def __repr__(self) -> str:
        return (
            f"AttributeMapping({self.source_name!r} -> {self.target_name!r}, "
            f"{self.mapping_type.value})"
        )


class ReadinessReport:
    """Aggregated mapping outcome for one container mapping.

    Every attribute that could not be resolved contributes one issue; the mapping is
    ready when there are none.
    """

    def __init__(self, container: str):
        self.container = container
        self.issues: List[Dict[str, Optional[str]]] = []

    def add(self, attribute: Optional[str], reason: str) -> None:
        self.issues.append({"attribute": attribute, "reason": reason})

    @property
    def ready(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {"container": self.container, "ready": self.ready, "issues": list(self.issues)}

    def __str__(self) -> str:
        if self.ready:
            return f"{self.container}: ready"
        problems = "; ".join(
            f"{issue['attribute']}: {issue['reason']}" if issue["attribute"] else issue["reason"]
            for issue in self.issues
        )
        return f"{self.container}: {problems}"


class ContainerMapping:
    """Decision of how a source table or query maps to a target table.

    Attribute mappings are computed by ``MappingResolver.resolve``; accessing them before
    that raises ``MappingError``.
    """

    def __init__(
        self,
        source: DataContainer,
        target: Optional[DataManipulator] = None,
        target_name: Optional[str] = None,
        mapping_type: MappingType = MappingType.UNSPECIFIED
    ):
        self.source = source
        self.target = target
        self.target_name = target_name or (target.name if target is not None else source.name)
        self.mapping_type = MappingType(mapping_type)
        self._attribute_mappings: Optional[List[AttributeMapping]] = None

    @property
    def is_resolved(self) -> bool:
        return self._attribute_mappings is not None

    @property
    def attribute_mappings(self) -> List[AttributeMapping]:
        if self._attribute_mappings is None:
            raise MappingError(
                f"Attribute mappings of {self.source.name} are not resolved",
                container=self.source.name
            )
        return list(self._attribute_mappings)

    def find_attribute_mapping(self, source_name: str) -> Optional[AttributeMapping]:
        """Find a decision by source label or name (exact case first)."""
        mappings = self.attribute_mappings
        for am in mappings:
            if am.source is not None and source_name in (am.source.name, am.source.label_or_name):
                return am
        lowered = source_name.lower()
        for am in mappings:
            if am.source is not None and lowered in (am.source.name.lower(), am.source_name.lower()):
                return am
        return None

    def get_attribute_mapping(self, column: Attribute, position: Optional[int] = None) -> Optional[AttributeMapping]:
        """Join a result-set column to its decision.

        Matches by name, then by label; sources without name metadata fall back to the
        column position.
        """
        mappings = self.attribute_mappings
        for am in mappings:
            if am.source is not None and am.source.name == column.name:
                return am
        am = self.find_attribute_mapping(column.label_or_name)
        if am is not None:
            return am
        if not self.source.has_name_metadata and position is not None and 0 <= position < len(mappings):
            return mappings[position]
        return None

    @property
    def has_new_attributes(self) -> bool:
        if self._attribute_mappings is None:
            return False
        return any(am.mapping_type == MappingType.CREATE for am in self._attribute_mappings)

    @property
    def display_name(self) -> str:
        if self.mapping_type == MappingType.SKIP:
            return "[Skip]"
        if self.mapping_type == MappingType.CREATE:
            return f"{self.target_name} [Create]"
        if self.mapping_type == MappingType.RECREATE:
            return f"{self.target_name} [Recreate]"
        if self.mapping_type == MappingType.EXISTING and self.has_new_attributes:
            return f"{self.target_name} [Alter]"
        return self.target_name

    def readiness(self) -> ReadinessReport:
        report = ReadinessReport(self.source.name)
        if self.mapping_type == MappingType.SKIP:
            return report
        if self.mapping_type == MappingType.UNSPECIFIED:
            report.add(None, "target mapping is unspecified (no target container)")
        if self._attribute_mappings is None:
            report.add(None, "attribute mappings are not resolved")
            return report
        for am in self._attribute_mappings:
            if am.mapping_type == MappingType.SKIP:
                continue
            if not am.mapping_type.is_valid:
                report.add(am.source_name, am.error or "mapping type is unspecified")
            elif am.mapping_type == MappingType.CREATE and not am.target_name:
                report.add(am.source_name, "target name is empty")
        if all(am.mapping_type == MappingType.SKIP for am in self._attribute_mappings):
            report.add(None, "no attributes are mapped")
        return report

    def is_ready(self) -> bool:
        return self.readiness().ready

    def check_ready(self) -> None:
        """Raise MappingError unless the mapping may be transferred."""
        report = self.readiness()
        if not report.ready:
            raise MappingError(
                f"Mapping is not ready: {report}",
                container=self.source.name,
                report=report
            )

    def to_dict(self) -> Dict[str, Any]:
        """Persistable form of this mapping (see ``mappings_to_dict``)."""
        data: Dict[str, Any] = {
            "targetName": self.target_name,
            "mappingType": self.mapping_type.value,
            "attributes": {},
        }
        for am in self._attribute_mappings or []:
            if am.source is not None:
                data["attributes"][am.source_name] = am.to_dict()
        return data

    def __repr__(self) -> str:
        return f"ContainerMapping({self.source.name!r} -> {self.display_name!r})"


def mappings_to_dict(mappings: List[ContainerMapping]) -> Dict[str, Any]:
    """Serialize mapping decisions keyed by source label."""
    return {mapping.source.name: mapping.to_dict() for mapping in mappings}


class MappingResolver:
    """Computes mapping decisions by comparing source attributes with the live target.

    Args:
        target_container: Target schema (None leaves every container unspecified)
        name_case: Naming policy for newly created tables and columns
    """

    def __init__(self, target_container: Optional[EntityContainer], name_case: NameCase = NameCase.DEFAULT):
        self.target_container = target_container
        self.name_case = NameCase(name_case)
        self.dialect: SQLDialect = target_container.dialect if target_container is not None else SQLDialect()

    def transform_name(self, name: str) -> str:
        """Name for a new target object: naming policy, else dialect storage case."""
        if self.name_case == NameCase.DEFAULT:
            return self.dialect.transform_name(name)
        return transform_case(name, self.name_case)

    def _name_key(self, name: str) -> str:
        if self.dialect.storage_case == "mixed":
            return name.lower()
        return self.dialect.transform_name(name)

    # ------------------------------------------------------------------
    # Container level
    # ------------------------------------------------------------------

    def create_mapping(
        self,
        source: DataContainer,
        target_name: Optional[str] = None,
        mapping_type: Optional[MappingType] = None
    ) -> ContainerMapping:
        """Create the container decision for a newly selected source object.

        Attribute decisions are not computed here; call ``resolve``.
        """
        mapping = ContainerMapping(source, target_name=target_name or source.name)
        self._bind_container(mapping, target_name, derived=target_name is None)
        if mapping_type is not None:
            mapping.mapping_type = MappingType(mapping_type)
        logger.debug(f"Created mapping {mapping.source.name} -> {mapping.display_name}")
        return mapping

    def _bind_container(self, mapping: ContainerMapping, target_name: Optional[str], derived: bool) -> None:
        name = target_name or mapping.source.name
        if self.target_container is None:
            mapping.target = None
            mapping.target_name = name
            mapping.mapping_type = MappingType.UNSPECIFIED
            return
        entity = self.target_container.get_entity(name)
        if entity is not None:
            mapping.target = entity
            mapping.target_name = entity.name
            if mapping.mapping_type not in (MappingType.RECREATE, MappingType.SKIP):
                mapping.mapping_type = MappingType.EXISTING
        else:
            mapping.target = None
            mapping.target_name = self.transform_name(name) if derived else name
            if mapping.mapping_type != MappingType.SKIP:
                mapping.mapping_type = MappingType.CREATE

    def refresh_target(self, mapping: ContainerMapping) -> None:
        """Re-bind the container decision to the live target schema."""
        if mapping.mapping_type == MappingType.RECREATE and mapping.target is None:
            mapping.mapping_type = MappingType.CREATE
        if mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE):
            mapping.mapping_type = MappingType.UNSPECIFIED
        self._bind_container(mapping, mapping.target_name, derived=False)

    def set_mapping_type(self, mapping: ContainerMapping, mapping_type: MappingType) -> ReadinessReport:
        """Change the container decision and re-resolve its attributes.

        Raises:
            MappingError: If ``existing`` is requested but the target does not exist
        """
        mapping_type = MappingType(mapping_type)
        if mapping_type == MappingType.EXISTING:
            entity = self.target_container.get_entity(mapping.target_name) if self.target_container else None
            if entity is None:
                raise MappingError(
                    f"Target {mapping.target_name} does not exist",
                    container=mapping.source.name
                )
            mapping.target = entity
            mapping.target_name = entity.name
        mapping.mapping_type = mapping_type
        return self.resolve(mapping, force_refresh=True)

    def set_target_name(self, mapping: ContainerMapping, target_name: str) -> ReadinessReport:
        """Point the container at another target name (existing or new)."""
        if mapping.mapping_type != MappingType.SKIP:
            mapping.mapping_type = MappingType.UNSPECIFIED
        self._bind_container(mapping, target_name, derived=False)
        return self.resolve(mapping, force_refresh=True)

    # ------------------------------------------------------------------
    # Attribute level
    # ------------------------------------------------------------------

    def resolve(self, mapping: ContainerMapping, force_refresh: bool = False) -> ReadinessReport:
        """Build or refresh the attribute decisions of ``mapping``.

        Idempotent. Never raises for an unmatched column; such columns are left
        unspecified and reported in the returned readiness report.
        """
        if mapping.is_resolved and not force_refresh:
            return mapping.readiness()

        previous = {}
        for am in mapping._attribute_mappings or []:
            if am.source is not None and am.explicit:
                previous[am.source.name] = am

        attribute_mappings = []
        for source_attribute in mapping.source.attributes():
            am = previous.get(source_attribute.name) or AttributeMapping(mapping, source_attribute)
            am.source = source_attribute
            am.source_type_override = None
            attribute_mappings.append(am)
        mapping._attribute_mappings = attribute_mappings

        if mapping.mapping_type == MappingType.SKIP:
            for am in attribute_mappings:
                am.target = None
                am.mapping_type = MappingType.SKIP
            return mapping.readiness()

        target_attributes: List[Attribute] = []
        if mapping.target is not None and mapping.mapping_type in (MappingType.EXISTING, MappingType.RECREATE):
            target_attributes = mapping.target.attributes()

        if not mapping.source.has_name_metadata and target_attributes:
            self._resolve_by_position(mapping, attribute_mappings, target_attributes)
        else:
            for am in attribute_mappings:
                self._resolve_attribute(mapping, am, target_attributes)

        self._check_collisions(mapping, attribute_mappings)

        report = mapping.readiness()
        logger.debug(f"Resolved {mapping.source.name}: {[repr(am) for am in attribute_mappings]}")
        if not report.ready:
            logger.debug(f"Mapping not ready: {report}")
        return report

    def _resolve_attribute(
        self,
        mapping: ContainerMapping,
        am: AttributeMapping,
        target_attributes: List[Attribute]
    ) -> None:
        am.error = None
        if am.explicit and am.mapping_type == MappingType.SKIP:
            am.target = None
            return

        explicit_name = am.target_name if am.explicit and am.target_name else None
        name = explicit_name or am.source.label_or_name

        if target_attributes:
            match = find_best_match(target_attributes, name)
            if match is not None:
                if mapping.mapping_type == MappingType.RECREATE:
                    # The table is dropped first, so the column will be created again
                    am.target = None
                    am.target_name = match.name
                    am.mapping_type = MappingType.CREATE
                    if not (am.explicit and am.target_type):
                        am.target_type = self.dialect.target_type(am.source)
                else:
                    am.bind(match)
                return

        am.target = None
        am.target_name = explicit_name or self.transform_name(name)
        am.mapping_type = MappingType.CREATE
        if not (am.explicit and am.target_type):
            am.target_type = self.dialect.target_type(am.source)

    def _resolve_by_position(
        self,
        mapping: ContainerMapping,
        attribute_mappings: List[AttributeMapping],
        target_attributes: List[Attribute]
    ) -> None:
        visible = [a for a in target_attributes if a.is_visible]
        position = 0
        for am in attribute_mappings:
            if am.explicit:
                self._resolve_attribute(mapping, am, target_attributes)
                continue
            if position >= len(visible):
                self._resolve_attribute(mapping, am, [])
                continue
            target = visible[position]
            position += 1
            if mapping.mapping_type == MappingType.RECREATE:
                am.target = None
                am.target_name = target.name
                am.target_type = target.full_type_name
                am.mapping_type = MappingType.CREATE
                am.error = None
            else:
                am.bind(target)
            am.source_type_override = target.full_type_name
            logger.debug(f"Positional match {am.source_name} -> {target.name}")

    def _check_collisions(self, mapping: ContainerMapping, attribute_mappings: List[AttributeMapping]) -> None:
        seen: Dict[str, AttributeMapping] = {}
        for am in attribute_mappings:
            if am.mapping_type == MappingType.SKIP or not am.mapping_type.is_valid:
                continue
            if not am.target_name:
                am.mapping_type = MappingType.UNSPECIFIED
                am.error = "target name is empty"
                continue
            key = self._name_key(am.target_name)
            other = seen.get(key)
            if other is not None:
                am.mapping_type = MappingType.UNSPECIFIED
                am.target = None
                am.error = f"target name {am.target_name!r} is already used by {other.source_name!r}"
                continue
            seen[key] = am

    def set_attribute_mapping(
        self,
        mapping: ContainerMapping,
        source_name: str,
        target_name: Optional[str] = None,
        mapping_type: Optional[MappingType] = None,
        target_type: Optional[str] = None,
        transformer_id: Optional[str] = None,
        transformer_properties: Optional[Dict[str, Any]] = None
    ) -> ReadinessReport:
        """Record an explicit decision for one source column and re-resolve.

        Raises:
            MappingError: If the source column does not exist
        """
        self.resolve(mapping)
        am = mapping.find_attribute_mapping(source_name)
        if am is None:
            raise MappingError(
                f"Source attribute {source_name} not found in {mapping.source.name}",
                container=mapping.source.name
            )
        self._apply_attribute_decision(am, target_name, mapping_type, target_type)
        if transformer_id is not None:
            am.set_transformer(transformer_id, transformer_properties)
        return self.resolve(mapping, force_refresh=True)

    def _apply_attribute_decision(
        self,
        am: AttributeMapping,
        target_name: Optional[str],
        mapping_type: Optional[MappingType],
        target_type: Optional[str]
    ) -> None:
        am.explicit = True
        if target_name:
            am.target_name = target_name
        if target_type:
            am.target_type = target_type
        if mapping_type is not None:
            mapping_type = MappingType(mapping_type)
            if mapping_type == MappingType.SKIP:
                am.mapping_type = MappingType.SKIP
            elif am.mapping_type == MappingType.SKIP:
                # Un-skipped; the next resolve decides existing or create
                am.mapping_type = MappingType.UNSPECIFIED

    def apply_saved(self, mapping: ContainerMapping, saved: Dict[str, Any]) -> ReadinessReport:
        """Restore persisted decisions onto a fresh container mapping.

        Args:
            mapping: Container mapping created by ``create_mapping``
            saved: One entry of the persisted mapping form

        Returns:
            Readiness report after re-resolution
        """
        saved_type = saved.get("mappingType")
        target_name = saved.get("targetName")
        if target_name and target_name != mapping.target_name:
            mapping.mapping_type = MappingType.UNSPECIFIED
            self._bind_container(mapping, target_name, derived=False)
        if saved_type in (MappingType.SKIP.value, MappingType.RECREATE.value):
            mapping.mapping_type = MappingType(saved_type)

        self.resolve(mapping, force_refresh=True)
        for label, decision in (saved.get("attributes") or {}).items():
            am = mapping.find_attribute_mapping(label)
            if am is None:
                logger.warning(f"Saved mapping for {mapping.source.name}.{label} has no source attribute")
                continue
            attribute_type = decision.get("mappingType")
            self._apply_attribute_decision(
                am,
                decision.get("targetName"),
                MappingType.SKIP if attribute_type == MappingType.SKIP.value else None,
                decision.get("targetType") if attribute_type != MappingType.EXISTING.value else None
            )
            transformer = decision.get("transformer")
            if transformer:
                am.set_transformer(transformer.get("id"), transformer.get("properties"))
        return self.resolve(mapping, force_refresh=True)
