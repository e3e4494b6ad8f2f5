# bundleshop/models/settings.py
from typing import Dict
from pydantic import BaseModel, ConfigDict
from .order import ServiceType

class ServiceSettings(BaseModel):
    """Immutable snapshot of the service-line toggles"""
    model_config = ConfigDict(frozen=True)

    version: int = 0
    enabled: Dict[ServiceType, bool] = {}

    def is_enabled(self, service_type: ServiceType) -> bool:
        # Lines without an explicit toggle are on
        return self.enabled.get(ServiceType(service_type), True)

    def with_toggle(self, service_type: ServiceType, enabled: bool) -> "ServiceSettings":
        toggles = dict(self.enabled)
        toggles[ServiceType(service_type)] = enabled
        return ServiceSettings(version=self.version + 1, enabled=toggles)
