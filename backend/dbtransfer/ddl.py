"""Target schema synthesis: DDL actions for create / recreate / alter mappings."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from dbtransfer.dialects import SQLDialect
from dbtransfer.exceptions import DDLError
from dbtransfer.mapping import AttributeMapping, ContainerMapping, MappingResolver
from dbtransfer.models import MappingType
from dbtransfer.struct import EntityContainer

logger = logging.getLogger(__name__)


class DDLAction:
    """One schema-change statement."""

    CREATE = "create"
    ALTER = "alter"
    DROP = "drop"

    def __init__(self, title: str, sql: str, kind: str = CREATE):
        self.title = title
        self.sql = sql
        self.kind = kind

    def to_dict(self):
        return {"title": self.title, "sql": self.sql, "kind": self.kind}

    def __repr__(self) -> str:
        return f"DDLAction({self.kind}, {self.sql!r})"


class ColumnModel:
    """Column of a table being created or altered."""

    def __init__(self, name: str, type_name: str, required: bool = False):
        self.name = name
        self.type_name = type_name
        self.required = required


class TableModel:
    """In-memory table description edited before its DDL is generated."""

    def __init__(self, name: str, schema: Optional[str] = None):
        self.name = name
        self.schema = schema
        self.columns: List[ColumnModel] = []
        self.primary_key: List[str] = []

    def add_column(self, column: ColumnModel) -> None:
        self.columns.append(column)


class SQLStructEditor:
    """Structural editor generating DDL from table models.

    Connectors whose dialect supports it expose one through
    ``EntityContainer.struct_editor``.
    """

    def __init__(self, dialect: SQLDialect):
        self.dialect = dialect

    def _column_clause(self, column: ColumnModel, nullability: bool = True) -> str:
        clause = f"{self.dialect.quote_identifier(column.name)} {column.type_name}"
        if nullability and column.required and self.dialect.supports_nullability:
            clause += " NOT NULL"
        return clause

    def create_table(self, table: TableModel) -> List[DDLAction]:
        qualified = self.dialect.qualified_name(table.schema, table.name)
        lines = [self._column_clause(column) for column in table.columns]
        if table.primary_key:
            constraint = self.dialect.quote_identifier(self.dialect.transform_name(f"{table.name}_pk"))
            key = ", ".join(self.dialect.quote_identifier(name) for name in table.primary_key)
            lines.append(f"CONSTRAINT {constraint} PRIMARY KEY ({key})")
        body = ",\n    ".join(lines)
        return [DDLAction(f"Create table {table.name}", f"CREATE TABLE {qualified} (\n    {body}\n)")]

    def add_column(self, table: TableModel, column: ColumnModel) -> List[DDLAction]:
        qualified = self.dialect.qualified_name(table.schema, table.name)
        # NOT NULL is not added to existing tables: they may already hold rows
        clause = self._column_clause(column, nullability=False)
        return [DDLAction(
            f"Add column {column.name} to {table.name}",
            f"ALTER TABLE {qualified} {self.dialect.alter_add_column} {clause}",
            DDLAction.ALTER
        )]

    def drop_table(self, table: TableModel) -> List[DDLAction]:
        qualified = self.dialect.qualified_name(table.schema, table.name)
        return [DDLAction(f"Drop table {table.name}", f"DROP TABLE {qualified}", DDLAction.DROP)]


class DdlSynthesizer:
    """Turns container mappings into DDL actions against a target schema.

    Actions are returned, never executed; see ``execute_ddl``.
    """

    def __init__(self, target_container: EntityContainer):
        self.target_container = target_container
        self.dialect: SQLDialect = target_container.dialect

    def synthesize(self, mapping: ContainerMapping) -> List[DDLAction]:
        """Compute the schema changes a mapping requires.

        Args:
            mapping: Resolved container mapping

        Returns:
            Ordered DDL actions (empty when nothing has to change)
        """
        if mapping.mapping_type == MappingType.SKIP:
            return []
        attribute_mappings = mapping.attribute_mappings
        new_attributes = [am for am in attribute_mappings if am.mapping_type == MappingType.CREATE]
        if mapping.mapping_type == MappingType.EXISTING and not new_attributes:
            return []

        table = TableModel(mapping.target_name, self.target_container.name)
        editor = self._editor()
        actions: List[DDLAction] = []

        if mapping.mapping_type == MappingType.RECREATE and mapping.target is not None:
            actions.extend(editor.drop_table(table))

        if mapping.mapping_type == MappingType.EXISTING:
            for am in new_attributes:
                actions.extend(editor.add_column(table, self._column_model(am)))
            return actions

        for am in attribute_mappings:
            if am.mapping_type == MappingType.SKIP:
                continue
            table.add_column(self._column_model(am))
        table.primary_key = self._primary_key(mapping)
        actions.extend(editor.create_table(table))
        return actions

    def _column_model(self, am: AttributeMapping) -> ColumnModel:
        type_name = self.column_type(am)
        required = bool(am.source is not None and am.source.required)
        return ColumnModel(am.target_name, type_name, required)

    def column_type(self, am: AttributeMapping) -> str:
        """Target type for a new column.

        A type that already embeds modifiers (``VARCHAR(50)``) is used as is; otherwise
        length, precision and scale are copied from the source attribute.
        """
        source = am.source
        type_name = am.target_type or self.dialect.map_type(source)
        if "(" in type_name:
            return type_name
        return self.dialect.type_with_modifiers(type_name, source.max_length, source.precision, source.scale)

    def _primary_key(self, mapping: ContainerMapping) -> List[str]:
        """Key columns for a new table: only when every source identifier is mapped."""
        source = mapping.source
        if not source.is_entity:
            return []
        identifiers = source.identifier_attributes()
        if not identifiers:
            return []
        key = []
        for attribute in identifiers:
            am = mapping.find_attribute_mapping(attribute.name)
            if am is None or am.mapping_type == MappingType.SKIP or not am.target_name:
                logger.debug(f"Identifier {attribute.name} of {source.name} is not mapped; no primary key")
                return []
            key.append(am.target_name)
        return key

    def _editor(self) -> SQLStructEditor:
        editor = self.target_container.struct_editor()
        if editor is None:
            logger.debug(f"No structural editor for {self.target_container.name}; using literal {self.dialect.name} DDL")
            editor = SQLStructEditor(self.dialect)
        return editor


DDLErrorHandler = Callable[[Exception, List[DDLAction]], Optional[List[str]]]


def execute_ddl(
    target_container: EntityContainer,
    actions: List[DDLAction],
    error_handler: Optional[DDLErrorHandler] = None,
    context=None
) -> None:
    """Execute DDL actions in the target's metadata context and commit.

    The context's current schema is switched to the target schema for the duration and
    restored afterwards, whether or not the DDL succeeds.

    Args:
        target_container: Target schema
        actions: Actions from ``DdlSynthesizer.synthesize``
        error_handler: Called with (error, actions) on failure; may return replacement SQL
            statements to run instead, or None to abort
        context: Execution context (defaults to the connector's metadata context)

    Raises:
        DDLError: If the DDL fails and no replacement SQL is supplied
    """
    if not actions:
        return
    context = context or target_container.connector.default_context()
    with context.use_schema(target_container.name):
        try:
            _run_statements(context, [action.sql for action in actions])
        except Exception as e:
            logger.error(f"DDL failed for {target_container.name or 'default schema'}: {e}")
            _rollback_quietly(context)
            replacement = error_handler(e, actions) if error_handler else None
            if not replacement:
                raise DDLError(f"Schema change failed: {e}", actions=actions) from e
            logger.info(f"Executing {len(replacement)} replacement DDL statement(s)")
            try:
                _run_statements(context, replacement)
            except Exception as retry_error:
                _rollback_quietly(context)
                raise DDLError(
                    f"Replacement DDL failed: {retry_error}",
                    actions=[DDLAction("Manual DDL", sql) for sql in replacement]
                ) from retry_error


def _run_statements(context, statements: List[str]) -> None:
    for sql in statements:
        logger.info(f"Executing DDL: {sql}")
        context.execute(sql).close()
    if not context.auto_commit:
        context.commit()


def _rollback_quietly(context) -> None:
    if context.auto_commit:
        return
    try:
        context.rollback()
    except Exception as e:
        logger.error(f"Rollback after DDL failure failed: {e}")


def refresh_mapping(mapping: ContainerMapping, resolver: MappingResolver) -> None:
    """Re-read the target after DDL and bind new objects.

    A created table becomes ``existing``; attributes still marked ``create`` become
    ``existing`` when they are now found.

    Raises:
        DDLError: If a newly created table cannot be found
    """
    if mapping.mapping_type == MappingType.SKIP:
        return
    created = mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE)
    resolver.target_container.refresh()
    resolver.refresh_target(mapping)
    if mapping.target is None:
        if created:
            raise DDLError(f"Target table {mapping.target_name} not found after creation")
        return
    resolver.resolve(mapping, force_refresh=True)
    for am in mapping.attribute_mappings:
        if am.mapping_type == MappingType.CREATE:
            target = mapping.target.get_attribute(am.target_name)
            if target is not None:
                am.bind(target)
    logger.debug(f"Refreshed mapping {mapping.source.name} -> {mapping.display_name}")
