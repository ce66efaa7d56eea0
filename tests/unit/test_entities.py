"""Unit tests for the entity layer: Record, RecordList and ListenerRegistry."""

from __future__ import annotations

import pytest

from fetchplan.entities import ListenerRegistry, Record, RecordList
from fetchplan.errors import FetchPlanError, MissingURLError
from fetchplan.models.resources import EntityKind


class Account(Record):
    url_root = "/accounts"
    defaults = {"active": True}


class Member(Record):
    id_attribute = "member_id"


class Members(RecordList):
    url_template = "/accounts/{account_id}/members"
    record_class = Member


class Upper(Record):
    url_root = "/upper"

    def parse(self, body):
        return {key.lower(): value for key, value in body.items()}


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


class TestRecord:
    def test_kind_flag(self) -> None:
        assert Account.kind == EntityKind.RECORD
        assert Members.kind == EntityKind.LIST

    def test_defaults_and_attributes(self) -> None:
        account = Account({"id": 4, "name": "acme"})
        assert account.to_json() == {"active": True, "id": 4, "name": "acme"}
        assert account.id == 4
        assert not account.is_new()

    def test_custom_id_attribute(self) -> None:
        member = Member({"member_id": "m-1"})
        assert member.id == "m-1"

    def test_set_notifies_only_on_change(self) -> None:
        account = Account({"id": 4})
        calls: list[str] = []
        account.subscribe("c1", lambda: calls.append("c1"))

        account.set({"id": 4})
        account.set({"name": "acme"})
        account.set({"plan": "pro"}, silent=True)

        assert calls == ["c1"]

    def test_unset_and_clear(self) -> None:
        account = Account({"id": 4, "name": "acme"})
        account.unset("name")
        assert not account.has("name")
        account.clear()
        assert account.to_json() == {}

    def test_pick(self) -> None:
        account = Account({"id": 4, "name": "acme", "plan": None})
        assert account.pick("id", "plan", "missing") == {"id": 4}

    def test_url_from_root_and_id(self) -> None:
        assert Account({"id": "a/b"}).url() == "/accounts/a%2Fb"
        assert Account().url() == "/accounts"

    def test_url_uses_id_url_option_before_first_fetch(self) -> None:
        account = Account(id=4)
        assert account.is_new()
        assert account.url() == "/accounts/4"

    def test_url_missing(self) -> None:
        with pytest.raises(MissingURLError):
            Member({"member_id": 1}).url()

    def test_url_template_requires_fields(self) -> None:
        with pytest.raises(FetchPlanError, match="account_id"):
            Members().url()

    async def test_fetch_applies_body_and_notifies(self, transport) -> None:
        transport.route("/accounts/4", {"id": 4, "name": "acme"})
        account = Account({"id": 4}, transport=transport)
        calls: list[int] = []
        account.subscribe("c1", lambda: calls.append(1))

        entity, status = await account.fetch(params={"expand": "owner"})

        assert entity is account
        assert status == 200
        assert account.get("name") == "acme"
        assert calls == [1]
        assert transport.calls == [("/accounts/4", {"method": "GET", "params": {"expand": "owner"}})]

    async def test_fetch_uses_parse(self, transport) -> None:
        transport.route("/upper/1", {"ID": 1, "NAME": "x"})
        record = Upper({"id": 1}, transport=transport)
        await record.fetch()
        assert record.get("name") == "x"

    async def test_fetch_without_transport(self) -> None:
        with pytest.raises(FetchPlanError, match="no transport"):
            await Account({"id": 4}).fetch()


# ---------------------------------------------------------------------------
# RecordList
# ---------------------------------------------------------------------------


class TestRecordList:
    def test_items_become_records_of_record_class(self) -> None:
        members = Members([{"member_id": 1}, {"member_id": 2}], account_id=4)
        assert len(members) == 2
        assert all(isinstance(member, Member) for member in members)
        assert members.get(2).id == 2
        assert members.url() == "/accounts/4/members"

    def test_add_updates_existing_ids(self) -> None:
        members = Members([{"member_id": 1, "role": "viewer"}])
        members.add([{"member_id": 1, "role": "admin"}, {"member_id": 3}])
        assert len(members) == 2
        assert members.get(1).get("role") == "admin"

    def test_reset_notifies(self) -> None:
        members = Members([{"member_id": 1}])
        calls: list[int] = []
        members.subscribe("c1", lambda: calls.append(1))
        members.reset([])
        assert len(members) == 0
        assert calls == [1]

    async def test_fetch_replaces_items(self, transport) -> None:
        transport.route("/accounts/4/members", [{"member_id": 5}, {"member_id": 6}])
        members = Members([{"member_id": 1}], transport=transport, account_id=4)

        _, status = await members.fetch()

        assert status == 200
        assert [member.id for member in members] == [5, 6]
        assert members.to_json() == [{"member_id": 5}, {"member_id": 6}]


# ---------------------------------------------------------------------------
# ListenerRegistry
# ---------------------------------------------------------------------------


class TestListenerRegistry:
    def test_subscribe_replaces_callback_for_token(self) -> None:
        registry = ListenerRegistry()
        calls: list[str] = []
        registry.subscribe("c1", lambda: calls.append("old"))
        registry.subscribe("c1", lambda: calls.append("new"))
        registry.trigger()
        assert calls == ["new"]
        assert len(registry) == 1

    def test_unsubscribe_during_trigger(self) -> None:
        registry = ListenerRegistry()
        calls: list[str] = []

        def first() -> None:
            calls.append("first")
            registry.unsubscribe("c2")

        registry.subscribe("c1", first)
        registry.subscribe("c2", lambda: calls.append("second"))
        registry.trigger()

        assert calls == ["first", "second"]
        assert "c2" not in registry

    def test_unsubscribe_unknown_token(self) -> None:
        ListenerRegistry().unsubscribe("nobody")
