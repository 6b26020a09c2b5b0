"""
User profile and device ownership lookups.

Profiles live at ``users/{uid}`` (``preferredTimezone``), plugs at
``users/{uid}/devices/{id}`` (``serialNumber``) and appliances at
``users/{uid}/appliances/{id}`` (``deviceId``).
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

from emonhub.document_store import DocumentStore

log = logging.getLogger(__name__)


class UserDirectory(ABC):
    @abstractmethod
    def preferred_timezone(self, uid: str) -> Optional[str]: ...

    @abstractmethod
    def metered_serials(self, uid: str) -> Set[str]:
        """Serials of the user's plugs that have at least one appliance."""


class StoreUserDirectory(UserDirectory):
    """Reads profiles, devices and appliances from the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def preferred_timezone(self, uid: str) -> Optional[str]:
        profile = self.store.get(f"users/{uid}") or {}
        return profile.get("preferredTimezone") or None

    def metered_serials(self, uid: str) -> Set[str]:
        device_serials: Dict[str, str] = {}
        for device_id in self.store.list_ids(f"users/{uid}/devices"):
            device = self.store.get(f"users/{uid}/devices/{device_id}") or {}
            serial = device.get("serialNumber")
            if serial:
                device_serials[device_id] = serial

        with_appliances: Set[str] = set()
        for appliance_id in self.store.list_ids(f"users/{uid}/appliances"):
            appliance = self.store.get(f"users/{uid}/appliances/{appliance_id}") or {}
            device_id = appliance.get("deviceId")
            if device_id:
                with_appliances.add(device_id)

        serials = {serial for device_id, serial in device_serials.items() if device_id in with_appliances}
        log.debug(f"User {uid} has {len(serials)} metered plug(s) with appliances")
        return serials

    def register_device(self, uid: str, device_id: str, serial_number: str) -> None:
        self.store.set(f"users/{uid}/devices/{device_id}", {"serialNumber": serial_number})

    def register_appliance(self, uid: str, appliance_id: str, device_id: str, name: str = "") -> None:
        self.store.set(f"users/{uid}/appliances/{appliance_id}", {"deviceId": device_id, "name": name})

    def set_preferred_timezone(self, uid: str, tz_name: str) -> None:
        profile = self.store.get(f"users/{uid}") or {}
        profile["preferredTimezone"] = tz_name
        self.store.set(f"users/{uid}", profile)
