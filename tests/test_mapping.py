"""Mapping resolution against live SQLite targets and in-memory fakes."""

import pytest

from dbtransfer.connectors import CsvFileConnector
from dbtransfer.dialects import get_dialect
from dbtransfer.exceptions import MappingError
from dbtransfer.mapping import MappingResolver, mappings_to_dict, transform_case
from dbtransfer.models import Attribute, DataKind, MappingType, NameCase
from dbtransfer.struct import DataContainer, DataManipulator, EntityContainer

from tests.conftest import run_script


class FakeSource(DataContainer):

    def __init__(self, name, attributes, identifiers=(), has_name_metadata=True):
        super().__init__(name)
        self._attributes = attributes
        self._identifiers = list(identifiers)
        self.has_name_metadata = has_name_metadata
        self.is_entity = bool(identifiers)

    def attributes(self):
        return list(self._attributes)

    def identifier_attributes(self):
        return [a for a in self._attributes if a.name in self._identifiers]

    def read_data(self, context, receiver, data_filter=None, offset=0, limit=0, fetch_size=10000, monitor=None):
        raise NotImplementedError


class FakeTable(DataManipulator):

    def __init__(self, name, attributes):
        super().__init__(name)
        self._attributes = attributes

    def attributes(self):
        return list(self._attributes)

    def insert_data(self, context, attributes, key_columns=None, options=None):
        raise NotImplementedError


class FakeSchema(EntityContainer):

    def __init__(self, tables=(), dialect="postgresql"):
        super().__init__("public")
        self.tables = {t.name: t for t in tables}
        self._dialect = get_dialect(dialect)

    @property
    def dialect(self):
        return self._dialect

    def get_entity(self, name):
        return self.tables.get(name) or next(
            (t for n, t in self.tables.items() if n.lower() == name.lower()), None)

    def list_entities(self):
        return list(self.tables)


def attr(name, type_name="INTEGER", **kwargs):
    return Attribute(name=name, type_name=type_name, **kwargs)


class TestContainerDecision:

    def test_existing_table_found_case_insensitively(self):
        schema = FakeSchema([FakeTable("Orders", [attr("id")])])
        mapping = MappingResolver(schema).create_mapping(FakeSource("orders", [attr("id")]))

        assert mapping.mapping_type == MappingType.EXISTING
        assert mapping.target_name == "Orders"

    def test_missing_table_is_created_in_storage_case(self):
        mapping = MappingResolver(FakeSchema()).create_mapping(FakeSource("ORDERS", [attr("ID")]))

        assert mapping.mapping_type == MappingType.CREATE
        assert mapping.target_name == "orders"
        assert mapping.display_name == "orders [Create]"

    def test_mixed_case_name_is_kept(self):
        mapping = MappingResolver(FakeSchema()).create_mapping(FakeSource("OrderLines", [attr("id")]))

        assert mapping.target_name == "OrderLines"

    def test_explicit_target_name_is_verbatim(self):
        resolver = MappingResolver(FakeSchema(), NameCase.UPPER)
        mapping = resolver.create_mapping(FakeSource("orders", [attr("id")]), target_name="archive_orders")

        assert mapping.target_name == "archive_orders"

    def test_name_case_policy_applies_to_new_tables(self):
        resolver = MappingResolver(FakeSchema(), NameCase.UPPER)
        mapping = resolver.create_mapping(FakeSource("orders", [attr("id")]))
        resolver.resolve(mapping)

        assert mapping.target_name == "ORDERS"
        assert mapping.attribute_mappings[0].target_name == "ID"

    def test_no_target_container_is_unspecified(self):
        resolver = MappingResolver(None)
        mapping = resolver.create_mapping(FakeSource("orders", [attr("id")]))
        report = resolver.resolve(mapping)

        assert mapping.mapping_type == MappingType.UNSPECIFIED
        assert not report.ready
        with pytest.raises(MappingError):
            mapping.check_ready()

    def test_attribute_mappings_require_resolution(self):
        mapping = MappingResolver(FakeSchema()).create_mapping(FakeSource("orders", [attr("id")]))

        with pytest.raises(MappingError):
            mapping.attribute_mappings

    def test_skip_container(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("orders", [attr("id")]))
        report = resolver.set_mapping_type(mapping, MappingType.SKIP)

        assert report.ready
        assert mapping.display_name == "[Skip]"
        assert all(am.mapping_type == MappingType.SKIP for am in mapping.attribute_mappings)

    def test_existing_requires_target(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("orders", [attr("id")]))

        with pytest.raises(MappingError):
            resolver.set_mapping_type(mapping, MappingType.EXISTING)


class TestAttributeDecisions:

    def test_existing_columns_are_bound(self):
        schema = FakeSchema([FakeTable("users", [attr("UserId"), attr("name", "TEXT")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("users", [attr("userid"), attr("name", "TEXT")]))
        report = resolver.resolve(mapping)

        assert report.ready
        first = mapping.attribute_mappings[0]
        assert first.mapping_type == MappingType.EXISTING
        assert first.target_name == "UserId"

    def test_exact_case_wins_over_case_insensitive(self):
        schema = FakeSchema([FakeTable("t", [attr("NAME"), attr("name")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("t", [attr("name")]))
        resolver.resolve(mapping)

        assert mapping.attribute_mappings[0].target is schema.tables["t"].attributes()[1]

    def test_new_column_on_existing_table_is_alter(self):
        schema = FakeSchema([FakeTable("users", [attr("id")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("users", [attr("id"), attr("email", "VARCHAR", max_length=80)]))
        resolver.resolve(mapping)

        email = mapping.attribute_mappings[1]
        assert email.mapping_type == MappingType.CREATE
        assert email.target_type == "VARCHAR(80)"
        assert mapping.display_name == "users [Alter]"

    def test_label_is_used_for_matching(self):
        schema = FakeSchema([FakeTable("t", [attr("total")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("t", [attr("sum(x)", label="total")]))
        resolver.resolve(mapping)

        assert mapping.attribute_mappings[0].target_name == "total"

    def test_target_label_is_used_for_matching(self):
        schema = FakeSchema([FakeTable("t", [attr("c_total", label="Total")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("t", [attr("total")]))
        resolver.resolve(mapping)

        first = mapping.attribute_mappings[0]
        assert first.mapping_type == MappingType.EXISTING
        assert first.target_name == "c_total"

    def test_duplicate_target_names_are_not_ready(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("t", [attr("amount"), attr("AMOUNT")]))
        resolver.set_mapping_type(mapping, MappingType.CREATE)
        report = resolver.resolve(mapping, force_refresh=True)

        assert not report.ready
        assert "already used" in str(report)

    def test_explicit_decisions_survive_re_resolution(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("t", [attr("a"), attr("b")]))
        resolver.set_attribute_mapping(mapping, "a", target_name="alpha", target_type="BIGINT")
        resolver.set_attribute_mapping(mapping, "b", mapping_type=MappingType.SKIP)

        resolver.resolve(mapping, force_refresh=True)

        a, b = mapping.attribute_mappings
        assert (a.target_name, a.target_type) == ("alpha", "BIGINT")
        assert b.mapping_type == MappingType.SKIP

    def test_all_columns_skipped_is_not_ready(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("t", [attr("a")]))
        report = resolver.set_attribute_mapping(mapping, "a", mapping_type=MappingType.SKIP)

        assert not report.ready

    def test_unknown_source_attribute(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("t", [attr("a")]))

        with pytest.raises(MappingError):
            resolver.set_attribute_mapping(mapping, "missing", target_name="x")

    def test_recreate_creates_matched_columns_again(self):
        schema = FakeSchema([FakeTable("t", [attr("id", "BIGINT")])])
        resolver = MappingResolver(schema)
        mapping = resolver.create_mapping(FakeSource("t", [attr("id", "INTEGER")]))
        resolver.set_mapping_type(mapping, MappingType.RECREATE)

        am = mapping.attribute_mappings[0]
        assert am.mapping_type == MappingType.CREATE
        assert am.target_name == "id"
        assert mapping.display_name == "t [Recreate]"


class TestPositionalMatching:

    def test_ordinal_fallback_skips_auto_generated_column(self, tmp_path, target):
        run_script(str(target.config["database"]),
                   "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, a TEXT, b INTEGER, c REAL);")
        csv_path = tmp_path / "items.csv"
        csv_path.write_text("x,1,1.5\ny,2,2.5\n", encoding="utf-8")
        source = CsvFileConnector({"database": str(csv_path), "header": "false"}).get_table()
        resolver = MappingResolver(target.get_schema())

        mapping = resolver.create_mapping(source)
        report = resolver.resolve(mapping)

        assert report.ready
        assert mapping.mapping_type == MappingType.EXISTING
        assert [(am.source_name, am.target_name) for am in mapping.attribute_mappings] == [
            ("column_1", "a"), ("column_2", "b"), ("column_3", "c"),
        ]

    def test_source_type_shows_matched_target_type(self):
        schema = FakeSchema([FakeTable("t", [attr("a", "VARCHAR", max_length=10)])])
        resolver = MappingResolver(schema)
        source = FakeSource("t", [attr("column_1", "TEXT")], has_name_metadata=False)
        mapping = resolver.create_mapping(source)
        resolver.resolve(mapping)

        assert mapping.attribute_mappings[0].source_type == "VARCHAR(10)"

    def test_extra_columns_beyond_target_are_created(self):
        schema = FakeSchema([FakeTable("t", [attr("a")])])
        resolver = MappingResolver(schema)
        source = FakeSource("t", [attr("column_1"), attr("column_2")], has_name_metadata=False)
        mapping = resolver.create_mapping(source)
        resolver.resolve(mapping)

        first, second = mapping.attribute_mappings
        assert first.target_name == "a"
        assert second.mapping_type == MappingType.CREATE


class TestPersistence:

    def test_saved_decisions_round_trip(self):
        schema = FakeSchema()
        resolver = MappingResolver(schema)
        source = FakeSource("orders", [attr("id"), attr("note", "TEXT"), attr("secret", "TEXT")])
        mapping = resolver.create_mapping(source, target_name="orders_copy")
        resolver.resolve(mapping)
        resolver.set_attribute_mapping(mapping, "note", target_name="remark",
                                       transformer_id="constant", transformer_properties={"value": "n/a"})
        resolver.set_attribute_mapping(mapping, "secret", mapping_type=MappingType.SKIP)
        saved = mappings_to_dict([mapping])

        assert saved["orders"]["targetName"] == "orders_copy"
        assert saved["orders"]["attributes"]["note"]["transformer"] == {"id": "constant", "properties": {"value": "n/a"}}

        restored = resolver.create_mapping(source)
        resolver.apply_saved(restored, saved["orders"])

        note = restored.find_attribute_mapping("note")
        assert restored.target_name == "orders_copy"
        assert note.target_name == "remark"
        assert note.explicit
        assert note.transformer_id == "constant"
        assert restored.find_attribute_mapping("secret").mapping_type == MappingType.SKIP

    def test_saved_entry_for_missing_column_is_ignored(self):
        resolver = MappingResolver(FakeSchema())
        mapping = resolver.create_mapping(FakeSource("t", [attr("a")]))
        report = resolver.apply_saved(mapping, {"attributes": {"gone": {"targetName": "x"}}})

        assert report.ready


class TestTransformCase:

    @pytest.mark.parametrize("name_case, expected", [
        (NameCase.UPPER, "ORDER LINES"),
        (NameCase.LOWER, "order lines"),
        (NameCase.CAMEL, "orderLines"),
        (NameCase.UNDERSCORE, "Order_Lines"),
        (NameCase.DEFAULT, "Order Lines"),
    ])
    def test_policies(self, name_case, expected):
        assert transform_case("Order Lines", name_case) == expected


def test_data_kind_defaults():
    assert Attribute("x").data_kind == DataKind.UNKNOWN
