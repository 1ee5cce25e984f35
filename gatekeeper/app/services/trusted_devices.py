# gatekeeper/app/services/trusted_devices.py
"""
Trusted device registry.

Trust is bound to possession of the device ID, not to a network location:
a successful check from a new IP refreshes the stored IP and last-seen time.
Devices have no TTL; removal is an explicit admin action (revoke).
"""
import asyncio
import logging
from typing import Dict, List, Optional

from gatekeeper.app.core.clock import Clock, utcnow
from gatekeeper.app.core.logging import audit
from gatekeeper.app.schemas.device import DeviceRegisterResult, TrustedDevice
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services.user_store import UserStore

logger = logging.getLogger(__name__)

DEVICE_ID_BYTES = 16


class TrustedDeviceRegistry:
    def __init__(
        self,
        user_store: UserStore,
        tokens: TokenGenerator,
        clock: Clock = utcnow,
    ) -> None:
        self._users = user_store
        self._tokens = tokens
        self._clock = clock
        self._devices: Dict[str, TrustedDevice] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        user_id: str,
        ip_address: str,
        browser_info: str,
        name: str,
    ) -> DeviceRegisterResult:
        """Register a device. Repeated registrations from one browser are allowed."""
        async with self._lock:
            device_id = self._tokens.random_id(DEVICE_ID_BYTES)
            while device_id in self._devices:
                device_id = self._tokens.random_id(DEVICE_ID_BYTES)
            self._devices[device_id] = TrustedDevice(
                device_id=device_id,
                user_id=user_id,
                name=name,
                ip_address=ip_address,
                last_seen=self._clock(),
                browser_info=browser_info,
            )

        try:
            user = await self._users.get(user_id)
            if user is not None:
                await self._users.update(
                    user_id, {"trusted_devices": [*user.trusted_devices, device_id]}
                )
        except Exception:
            logger.exception("Error persisting trusted device for user %s", user_id)
            async with self._lock:
                self._devices.pop(device_id, None)
            return DeviceRegisterResult(
                success=False, message="Error registering trusted device."
            )

        audit("device.registered", user_id=user_id, device_id=device_id, ip=ip_address)
        return DeviceRegisterResult(
            success=True,
            message=f'Device "{name}" registered as trusted.',
            device_id=device_id,
        )

    async def is_trusted(self, user_id: str, device_id: str, ip_address: str) -> bool:
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None or device.user_id != user_id:
                return False

            device.last_seen = self._clock()
            if device.ip_address != ip_address:
                logger.info(
                    "Trusted device %s for user %s seen from new IP %s",
                    device_id, user_id, ip_address,
                )
                device.ip_address = ip_address
            return True

    async def get(self, device_id: str) -> Optional[TrustedDevice]:
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            return TrustedDevice(**vars(device))

    async def list_devices(self, user_id: str) -> List[TrustedDevice]:
        async with self._lock:
            return [
                TrustedDevice(**vars(device))
                for device in self._devices.values()
                if device.user_id == user_id
            ]

    async def revoke(self, device_id: str, admin_id: str) -> bool:
        async with self._lock:
            device = self._devices.pop(device_id, None)
        if device is None:
            return False

        user = await self._users.get(device.user_id)
        if user is not None:
            await self._users.update(
                device.user_id,
                {"trusted_devices": [d for d in user.trusted_devices if d != device_id]},
            )
        audit("device.revoked", admin_id=admin_id, device_id=device_id, user_id=device.user_id)
        return True
