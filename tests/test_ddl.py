"""DDL synthesis and execution against SQLite targets."""

import pytest

from dbtransfer.ddl import DDLAction, DdlSynthesizer, execute_ddl, refresh_mapping
from dbtransfer.exceptions import DDLError
from dbtransfer.mapping import MappingResolver
from dbtransfer.models import MappingType

from tests.conftest import run_script, table_names
from tests.test_mapping import FakeSchema, FakeSource, FakeTable, attr


def resolved(source_container, target_schema, mapping_type=None):
    resolver = MappingResolver(target_schema)
    mapping = resolver.create_mapping(source_container)
    if mapping_type is not None:
        resolver.set_mapping_type(mapping, mapping_type)
    else:
        resolver.resolve(mapping)
    return resolver, mapping


class TestSynthesize:

    def test_create_table_with_primary_key(self, make_items, source, target):
        make_items(3)
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("items"), schema)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert len(actions) == 1
        assert actions[0].kind == DDLAction.CREATE
        assert actions[0].sql.startswith("CREATE TABLE items (")
        assert "PRIMARY KEY (id)" in actions[0].sql

    def test_no_primary_key_when_identifier_is_skipped(self, make_items, source, target):
        make_items(3)
        schema = target.get_schema()
        resolver, mapping = resolved(source.get_table("items"), schema)
        resolver.set_attribute_mapping(mapping, "id", mapping_type=MappingType.SKIP)

        sql = DdlSynthesizer(schema).synthesize(mapping)[0].sql

        assert "PRIMARY KEY" not in sql
        assert "id INTEGER" not in sql

    def test_query_source_has_no_primary_key(self, make_items, source, target):
        make_items(3)
        schema = target.get_schema()
        _, mapping = resolved(source.query("SELECT id, name FROM items", name="picked"), schema)

        sql = DdlSynthesizer(schema).synthesize(mapping)[0].sql

        assert "CREATE TABLE picked" in sql
        assert "PRIMARY KEY" not in sql

    def test_required_columns_stay_required(self, source_path, source, target):
        run_script(source_path, "CREATE TABLE t (id INTEGER PRIMARY KEY, code VARCHAR(12) NOT NULL);")
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("t"), schema)

        sql = DdlSynthesizer(schema).synthesize(mapping)[0].sql

        assert "code VARCHAR(12) NOT NULL" in sql

    def test_new_column_on_existing_table_is_added_without_not_null(self, source_path, target_path, source, target):
        run_script(source_path, "CREATE TABLE t (id INTEGER PRIMARY KEY, code TEXT NOT NULL);")
        run_script(target_path, "CREATE TABLE t (id INTEGER PRIMARY KEY);")
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("t"), schema)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert mapping.mapping_type == MappingType.EXISTING
        assert [a.kind for a in actions] == [DDLAction.ALTER]
        assert actions[0].sql == "ALTER TABLE t ADD COLUMN code TEXT"

    def test_existing_table_without_new_columns_needs_nothing(self, make_items, target_path, source, target):
        make_items(3)
        run_script(target_path, "CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT, price REAL);")
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("items"), schema)

        assert DdlSynthesizer(schema).synthesize(mapping) == []

    def test_recreate_drops_then_creates(self, make_items, target_path, source, target):
        make_items(3)
        run_script(target_path, "CREATE TABLE items (id INTEGER, legacy TEXT);")
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("items"), schema, MappingType.RECREATE)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert [a.kind for a in actions] == [DDLAction.DROP, DDLAction.CREATE]
        assert "legacy" not in actions[1].sql

    def test_skipped_container_needs_nothing(self, make_items, source, target):
        make_items(1)
        schema = target.get_schema()
        _, mapping = resolved(source.get_table("items"), schema, MappingType.SKIP)

        assert DdlSynthesizer(schema).synthesize(mapping) == []

    def test_explicit_type_with_modifiers_is_used_verbatim(self, make_items, source, target):
        make_items(1)
        schema = target.get_schema()
        resolver, mapping = resolved(source.get_table("items"), schema)
        resolver.set_attribute_mapping(mapping, "price", target_type="DECIMAL(12,2)")

        assert "price DECIMAL(12,2)" in DdlSynthesizer(schema).synthesize(mapping)[0].sql


class TestExecute:

    def test_created_table_is_bound_after_refresh(self, make_items, source, target, target_path):
        make_items(3)
        schema = target.get_schema()
        resolver, mapping = resolved(source.get_table("items"), schema)

        execute_ddl(schema, DdlSynthesizer(schema).synthesize(mapping))
        refresh_mapping(mapping, resolver)

        assert "items" in table_names(target_path)
        assert mapping.mapping_type == MappingType.EXISTING
        assert all(am.mapping_type == MappingType.EXISTING for am in mapping.attribute_mappings)

    def test_added_column_is_bound_after_refresh(self, source_path, target_path, source, target):
        run_script(source_path, "CREATE TABLE t (id INTEGER PRIMARY KEY, code TEXT);")
        run_script(target_path, "CREATE TABLE t (id INTEGER PRIMARY KEY);")
        schema = target.get_schema()
        resolver, mapping = resolved(source.get_table("t"), schema)

        execute_ddl(schema, DdlSynthesizer(schema).synthesize(mapping))
        refresh_mapping(mapping, resolver)

        code = mapping.find_attribute_mapping("code")
        assert code.mapping_type == MappingType.EXISTING
        assert code.target is not None

    def test_failure_raises_with_actions(self, target):
        schema = target.get_schema()
        actions = [DDLAction("Broken", "CREATE TABLE (")]

        with pytest.raises(DDLError) as exc_info:
            execute_ddl(schema, actions)

        assert exc_info.value.actions == actions

    def test_error_handler_can_supply_replacement(self, target, target_path):
        schema = target.get_schema()
        seen = []

        def handler(error, actions):
            seen.append(actions)
            return ["CREATE TABLE fixed (id INTEGER)"]

        execute_ddl(schema, [DDLAction("Broken", "CREATE TABLE (")], error_handler=handler)

        assert len(seen) == 1
        assert "fixed" in table_names(target_path)

    def test_failed_replacement_raises(self, target):
        schema = target.get_schema()

        with pytest.raises(DDLError) as exc_info:
            execute_ddl(schema, [DDLAction("Broken", "CREATE TABLE (")], error_handler=lambda e, a: ["ALSO BROKEN"])

        assert exc_info.value.actions[0].sql == "ALSO BROKEN"

    def test_handler_returning_none_aborts(self, target):
        with pytest.raises(DDLError):
            execute_ddl(target.get_schema(), [DDLAction("Broken", "CREATE TABLE (")], error_handler=lambda e, a: None)

    def test_missing_created_table_is_an_error(self, make_items, source, target):
        make_items(1)
        schema = target.get_schema()
        resolver, mapping = resolved(source.get_table("items"), schema)

        with pytest.raises(DDLError):
            refresh_mapping(mapping, resolver)


class TestLiteralDdl:
    """Targets without a structural editor get DDL text built from their dialect."""

    def people(self):
        return FakeSource(
            "people",
            [attr("id", required=True), attr("name", "VARCHAR", max_length=40)],
            identifiers=["id"]
        )

    def test_create_table_with_primary_key(self):
        schema = FakeSchema()
        assert schema.struct_editor() is None
        _, mapping = resolved(self.people(), schema)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert len(actions) == 1
        sql = actions[0].sql
        assert sql.startswith("CREATE TABLE public.people (")
        assert "id INTEGER NOT NULL" in sql
        assert "name VARCHAR(40)" in sql
        assert "CONSTRAINT people_pk PRIMARY KEY (id)" in sql

    def test_add_column_to_existing_table(self):
        schema = FakeSchema([FakeTable("people", [attr("id")])])
        _, mapping = resolved(self.people(), schema)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert [a.kind for a in actions] == [DDLAction.ALTER]
        assert actions[0].sql == "ALTER TABLE public.people ADD COLUMN name VARCHAR(40)"

    def test_recreate_drops_existing_table(self):
        schema = FakeSchema([FakeTable("people", [attr("id")])])
        _, mapping = resolved(self.people(), schema, MappingType.RECREATE)

        actions = DdlSynthesizer(schema).synthesize(mapping)

        assert [a.kind for a in actions] == [DDLAction.DROP, DDLAction.CREATE]
        assert actions[0].sql == "DROP TABLE public.people"
        assert "PRIMARY KEY (id)" in actions[1].sql
