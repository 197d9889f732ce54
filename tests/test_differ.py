"""測試部分更新的欄位合併"""

import datetime as dt
import logging

import pytest

from crudflow.model import ModelSpec
from crudflow.resource_manager.differ import patch_value
from tests.models import Address, Shop, User


@pytest.fixture
def spec():
    return ModelSpec(User)


@pytest.fixture
def existing():
    return User(
        id="user01",
        name="alice",
        email="alice@example.com",
        age=30,
        active=True,
        nickname="al",
        created_by="creator",
        created_at=dt.datetime(2024, 1, 1),
        remark="old remark",
    )


class TestPatchValue:
    def test_only_non_zero_fields_are_copied(self, spec, existing):
        changed = patch_value(spec, existing, User(name="bob"))
        assert changed == ["name"]
        assert existing.name == "bob"
        assert existing.email == "alice@example.com"
        assert existing.age == 30
        assert existing.active is True
        assert existing.nickname == "al"

    def test_zero_values_never_overwrite(self, spec, existing):
        changed = patch_value(spec, existing, User(age=0, active=False, email=""))
        assert changed == []
        assert existing.age == 30
        assert existing.active is True

    def test_nullable_field_patched_with_empty_string(self, spec, existing):
        # None 代表未傳入；空字串是有效值
        changed = patch_value(spec, existing, User(nickname=""))
        assert changed == ["nickname"]
        assert existing.nickname == ""

    def test_common_fields_allow_list(self, spec, existing):
        incoming = User(
            id="other",
            created_by="intruder",
            updated_by="intruder",
            created_at=dt.datetime(2030, 1, 1),
            remark="new remark",
            order=3,
        )
        changed = patch_value(spec, existing, incoming)
        assert sorted(changed) == ["order", "remark"]
        assert existing.id == "user01"
        assert existing.created_by == "creator"
        assert existing.created_at == dt.datetime(2024, 1, 1)
        assert existing.remark == "new remark"
        assert existing.order == 3

    def test_nested_struct_skipped(self):
        spec = ModelSpec(Shop)
        existing = Shop(id="s1", name="old", address=Address(city="Taipei"))
        changed = patch_value(
            spec, existing, Shop(name="new", address=Address(city="Tainan"))
        )
        assert changed == ["name"]
        assert existing.address.city == "Taipei"

    def test_logs_changed_fields_only(self, spec, existing, caplog):
        with caplog.at_level(logging.INFO, logger="crudflow.resource_manager.differ"):
            patch_value(spec, existing, User(name="bob"))
        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["[PATCH User] field: 'name': 'alice' --> 'bob'"]

    def test_log_renders_missing_value(self, spec, caplog):
        existing = User(id="user02")
        with caplog.at_level(logging.INFO, logger="crudflow.resource_manager.differ"):
            patch_value(spec, existing, User(nickname="neo"))
        assert caplog.records[0].getMessage() == (
            "[PATCH User] field: 'nickname': <nil> --> 'neo'"
        )
