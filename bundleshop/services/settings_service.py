# bundleshop/services/settings_service.py
import asyncio
import logging
from typing import Dict, Any, Iterable, Tuple
from decimal import Decimal
from ..models.order import ServiceType
from ..models.settings import ServiceSettings
from ..constants import SUPPLIER_SERVICE_MAP


def _toggle_key(service_type: ServiceType) -> str:
    return f"service_{ServiceType(service_type).value}_enabled"


class SettingsService:
    """Settings table access plus the current service-line snapshot.

    Readers call ``current()`` once per request and keep the snapshot they got;
    writers build a new snapshot and swap it in, so nothing is mutated in place.
    """

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)
        self._snapshot = ServiceSettings()
        self._write_lock = asyncio.Lock()

    def current(self) -> ServiceSettings:
        return self._snapshot

    async def load(self) -> ServiceSettings:
        """Build the snapshot from the settings table"""
        settings = await self.get_all_settings()
        enabled = {}
        for service_type in ServiceType:
            value = settings.get(_toggle_key(service_type))
            if value is not None:
                enabled[service_type] = bool(value)
        self._snapshot = ServiceSettings(
            version=int(settings.get('settings_version') or 0),
            enabled=enabled
        )
        self.logger.info(f"Loaded service settings v{self._snapshot.version}")
        return self._snapshot

    async def set_service_enabled(self, service_type: ServiceType, enabled: bool) -> ServiceSettings:
        return await self.apply_toggles([(service_type, enabled)])

    async def apply_toggles(self, toggles: Iterable[Tuple[ServiceType, bool]]) -> ServiceSettings:
        """Persist toggles and publish a new snapshot version"""
        async with self._write_lock:
            snapshot = self._snapshot
            for service_type, enabled in toggles:
                snapshot = snapshot.with_toggle(service_type, enabled)
                await self.update_setting(_toggle_key(service_type), bool(enabled))
            if snapshot is not self._snapshot:
                await self.update_setting('settings_version', snapshot.version)
                self._snapshot = snapshot
                self.logger.info(f"Service settings now v{snapshot.version}: {snapshot.enabled}")
            return self._snapshot

    async def apply_supplier_settings(self, payload: Dict[str, Any]) -> ServiceSettings:
        """Translate a supplier settings-change webhook into toggles.

        Accepts ``{"services": [{"service": "fastnet", "enabled": false}, ...]}``
        or a single ``{"service": ..., "enabled": ...}`` object. Supplier ids and
        internal service names are both understood; unknown ones are skipped.
        """
        by_supplier_id = {v: k for k, v in SUPPLIER_SERVICE_MAP.items()}
        entries = payload.get('services')
        if entries is None:
            entries = [payload.get('data') or payload]

        toggles = []
        for entry in entries:
            name = str(entry.get('service_type') or entry.get('service') or '')
            internal = by_supplier_id.get(name.lower(), name.upper())
            if internal not in SUPPLIER_SERVICE_MAP or 'enabled' not in entry:
                self.logger.warning(f"Ignoring settings entry: {entry}")
                continue
            toggles.append((ServiceType(internal), self._convert_value(str(entry['enabled']), 'boolean')))

        return await self.apply_toggles(toggles)

    async def get_all_settings(self) -> Dict[str, Any]:
        """Every stored setting, typed"""
        async with self.db.pool.acquire() as conn:
            settings = await conn.fetch("""
                SELECT key, value, type
                FROM settings
            """)

            return {s['key']: self._convert_value(s['value'], s['type']) for s in settings}

    async def update_setting(self, key: str, value: Any) -> bool:
        value_type = self._get_value_type(value)
        value_str = str(value).lower() if isinstance(value, bool) else str(value)

        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                INSERT INTO settings (key, value, type)
                VALUES ($1, $2, $3)
                ON CONFLICT (key)
                DO UPDATE SET value = $2, type = $3, updated_at = CURRENT_TIMESTAMP
            """, key, value_str, value_type)

            return result != "INSERT 0 0"

    @staticmethod
    def _get_value_type(value: Any) -> str:
        if isinstance(value, bool):
            return 'boolean'
        elif isinstance(value, int):
            return 'integer'
        elif isinstance(value, float) or isinstance(value, Decimal):
            return 'decimal'
        elif isinstance(value, dict):
            return 'json'
        else:
            return 'string'

    @staticmethod
    def _convert_value(value: str, type_: str) -> Any:
        import json

        if type_ == 'boolean':
            return value.lower() in ('true', '1', 'yes', 'on')
        elif type_ == 'integer':
            return int(value)
        elif type_ == 'decimal':
            return Decimal(value)
        elif type_ == 'json':
            return json.loads(value)
        else:
            return value
