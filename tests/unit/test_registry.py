"""Unit tests for the resource-type registry, descriptors and aggregate state helpers."""

from __future__ import annotations

import pytest

from fetchplan.entities import Record, RecordList
from fetchplan.errors import UnknownResourceTypeError
from fetchplan.models.resources import EntityKind, LoadingState, ResourceDescriptor
from fetchplan.orchestrator.registry import ResourceRegistry
from fetchplan.orchestrator.states import has_errored, has_loaded, is_loading, is_pending


class Invoice(Record):
    url_root = "/invoices"
    id_attribute = "number"


class Invoices(RecordList):
    url_template = "/accounts/{account_id}/invoices"
    record_class = Invoice


class TestRegister:
    def test_kind_and_id_attribute_from_entity_class(self) -> None:
        registry = ResourceRegistry()
        invoice = registry.register("invoice", Invoice, dependencies=["number"])
        invoices = registry.register("invoices", Invoices, dependencies=["account_id"])

        assert invoice.kind == EntityKind.RECORD
        assert invoice.id_attribute == "number"
        assert invoices.kind == EntityKind.LIST
        assert registry.names() == ["invoice", "invoices"]
        assert "invoice" in registry

    def test_explicit_kind_overrides_class(self) -> None:
        registry = ResourceRegistry()
        resource_type = registry.register("odd", Invoice, kind=EntityKind.LIST)
        assert resource_type.kind == EntityKind.LIST

    def test_register_replaces(self) -> None:
        registry = ResourceRegistry()
        registry.register("invoice", Invoice)
        replaced = registry.register("invoice", Invoice, cache_timeout_ms=10)
        assert registry.get("invoice") is replaced

    def test_unknown_type(self) -> None:
        with pytest.raises(UnknownResourceTypeError, match="ghost"):
            ResourceRegistry().get("ghost")

    def test_unknown_type_is_a_key_error(self) -> None:
        with pytest.raises(KeyError):
            ResourceRegistry().get("ghost")

    @pytest.mark.parametrize(("measure", "expected"), [(False, False), (True, True)])
    def test_should_measure_flag(self, measure: bool, expected: bool) -> None:
        resource_type = ResourceRegistry().register("invoice", Invoice, measure=measure)
        assert resource_type.should_measure(ResourceDescriptor("invoice")) is expected

    def test_should_measure_callable(self) -> None:
        resource_type = ResourceRegistry().register(
            "invoice", Invoice, measure=lambda descriptor: descriptor.params.get("trace") == "on"
        )
        assert resource_type.should_measure(ResourceDescriptor("invoice", params={"trace": "on"}))
        assert not resource_type.should_measure(ResourceDescriptor("invoice"))


class TestBuild:
    def test_build_for_passes_path_as_url_options(self, transport) -> None:
        registry = ResourceRegistry(transport=transport)
        registry.register("invoices", Invoices, dependencies=["account_id"])

        entity = registry.build_for(ResourceDescriptor("invoices", path={"account_id": 9}))

        assert isinstance(entity, Invoices)
        assert entity.transport is transport
        assert entity.url() == "/accounts/9/invoices"

    def test_build_for_seeds_record_with_data(self) -> None:
        registry = ResourceRegistry()
        registry.register("invoice", Invoice)
        entity = registry.build_for(ResourceDescriptor("invoice", data={"number": "INV-1"}))
        assert entity.id == "INV-1"
        assert entity.url() == "/invoices/INV-1"

    def test_empty_placeholder(self) -> None:
        registry = ResourceRegistry()
        registry.register("invoices", Invoices)
        entity = registry.empty("invoices")
        assert entity.is_empty
        assert len(entity) == 0


class TestDescriptorCoerce:
    def test_none_defaults_type_to_name(self) -> None:
        descriptor = ResourceDescriptor.coerce("user", None)
        assert descriptor.resource_type == "user"
        assert descriptor.critical

    def test_mapping(self) -> None:
        descriptor = ResourceDescriptor.coerce(
            "author", {"resource_type": "user", "path": {"id": 7}, "depends_on": ["id"], "noncritical": True}
        )
        assert descriptor.resource_type == "user"
        assert descriptor.depends_on == ("id",)
        assert not descriptor.critical

    def test_descriptor_is_copied(self) -> None:
        original = ResourceDescriptor("user")
        coerced = ResourceDescriptor.coerce("user", original)
        coerced.refetch = True
        assert original.refetch is False

    def test_unknown_option(self) -> None:
        with pytest.raises(ValueError, match="cache_forever"):
            ResourceDescriptor.coerce("user", {"cache_forever": True})

    def test_missing_dependencies(self) -> None:
        descriptor = ResourceDescriptor("comments", depends_on=("post_id", "user_id"))
        assert descriptor.missing_dependencies({"post_id": 3, "user_id": None}) == ["user_id"]

    def test_prefetch_entries_are_not_critical(self) -> None:
        assert not ResourceDescriptor("user", prefetch=True).critical


class TestAggregateStates:
    L = LoadingState

    @pytest.mark.parametrize(
        ("states", "loaded", "loading", "errored", "pending"),
        [
            ([], True, False, False, False),
            ([L.LOADED, L.LOADED], True, False, False, False),
            ([L.LOADED, L.LOADING], False, True, False, False),
            ([L.LOADING, L.ERROR], False, False, True, False),
            ([L.PENDING, L.LOADED], False, False, False, True),
        ],
    )
    def test_helpers(
        self, states: list[LoadingState], loaded: bool, loading: bool, errored: bool, pending: bool
    ) -> None:
        assert has_loaded(states) is loaded
        assert is_loading(states) is loading
        assert has_errored(states) is errored
        assert is_pending(states) is pending

    def test_generators_are_accepted(self) -> None:
        assert is_loading(state for state in [LoadingState.LOADING])
