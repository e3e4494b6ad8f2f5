# tests/test_settings_service.py
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, call
import pytest
from pydantic import ValidationError
from bundleshop.models.order import ServiceType
from bundleshop.models.settings import ServiceSettings


async def test_load_builds_snapshot(settings):
    settings.get_all_settings = AsyncMock(return_value={
        'service_MTN_EXPRESS_enabled': False,
        'service_AT_enabled': True,
        'settings_version': 7,
        'shop_name': 'Bundles',
    })

    snapshot = await settings.load()

    assert snapshot.version == 7
    assert snapshot.is_enabled(ServiceType.MTN_EXPRESS) is False
    assert snapshot.is_enabled(ServiceType.AT) is True
    # No stored toggle means the line is on
    assert snapshot.is_enabled(ServiceType.TELECEL) is True
    assert settings.current() is snapshot


async def test_toggle_publishes_new_version(settings):
    before = settings.current()

    after = await settings.set_service_enabled(ServiceType.AT, False)

    assert after.version == before.version + 1
    assert after.is_enabled(ServiceType.AT) is False
    # Readers holding the old snapshot are unaffected
    assert before.is_enabled(ServiceType.AT) is True
    assert settings.update_setting.await_args_list == [
        call('service_AT_enabled', False),
        call('settings_version', 1),
    ]


def test_snapshot_is_frozen():
    snapshot = ServiceSettings()
    with pytest.raises(ValidationError):
        snapshot.version = 3


async def test_concurrent_toggles_each_bump_version(settings):
    await asyncio.gather(
        settings.set_service_enabled(ServiceType.AT, False),
        settings.set_service_enabled(ServiceType.TELECEL, False),
    )

    snapshot = settings.current()
    assert snapshot.version == 2
    assert not snapshot.is_enabled(ServiceType.AT)
    assert not snapshot.is_enabled(ServiceType.TELECEL)


class TestSupplierSettingsWebhook:
    async def test_list_of_services_by_supplier_id(self, settings):
        snapshot = await settings.apply_supplier_settings({
            "services": [
                {"service": "fastnet", "enabled": False},
                {"service": "datagod", "enabled": "true"},
            ]
        })

        assert snapshot.version == 2
        assert snapshot.is_enabled(ServiceType.MTN_EXPRESS) is False
        assert snapshot.is_enabled(ServiceType.MTN_UP2U) is True

    async def test_single_entry_by_internal_name(self, settings):
        snapshot = await settings.apply_supplier_settings({"data": {"service_type": "telecel", "enabled": "off"}})

        assert snapshot.is_enabled(ServiceType.TELECEL) is False

    async def test_unknown_entries_change_nothing(self, settings):
        before = settings.current()

        snapshot = await settings.apply_supplier_settings({
            "services": [{"service": "vodafone", "enabled": False}, {"service": "at"}]
        })

        assert snapshot is before
        settings.update_setting.assert_not_awaited()


@pytest.mark.parametrize("value,expected", [
    (True, 'boolean'),
    (3, 'integer'),
    (Decimal("1.5"), 'decimal'),
    ({"a": 1}, 'json'),
    ("text", 'string'),
])
def test_value_types(settings, value, expected):
    assert settings._get_value_type(value) == expected


@pytest.mark.parametrize("raw,type_,expected", [
    ("true", 'boolean', True),
    ("False", 'boolean', False),
    ("12", 'integer', 12),
    ("2.50", 'decimal', Decimal("2.50")),
    ('{"a": 1}', 'json', {"a": 1}),
    ("hello", 'string', "hello"),
])
def test_convert_value(settings, raw, type_, expected):
    assert settings._convert_value(raw, type_) == expected
