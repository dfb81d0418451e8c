#!/usr/bin/env python3
"""
Device Manager Module
Selects the Frida device (USB iPhone, remote frida-server or local) to instrument
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .exceptions import SessionError

try:
    import frida
    FRIDA_AVAILABLE = True
except ImportError:
    FRIDA_AVAILABLE = False
    logging.warning("Frida not available. Device features will be disabled.")


@dataclass
class DeviceInfo:
    """Data class to store device information"""
    id: str
    name: str
    type: str


class DeviceManager:
    """
    Device Manager for Frida device selection

    Picks a device by id when one is given, otherwise the first USB device.
    """

    def __init__(self, device_id: Optional[str] = None, timeout: int = 5):
        """
        Initialize Device Manager

        Args:
            device_id: Specific Frida device id (None for USB auto-detect)
            timeout: Seconds to wait for the device to show up
        """
        if not FRIDA_AVAILABLE:
            raise ImportError("Frida is required but not installed")

        self.logger = logging.getLogger(__name__)
        self.device_id = device_id
        self.timeout = timeout
        self.frida_device: Optional[Any] = None

    def list_devices(self) -> List[DeviceInfo]:
        """
        List devices visible to Frida

        Returns:
            List[DeviceInfo]: Every enumerated device
        """
        try:
            devices = frida.enumerate_devices()
        except frida.TransportError as e:
            self.logger.error(f"Device enumeration failed: {e}")
            return []

        return [DeviceInfo(id=d.id, name=d.name, type=d.type) for d in devices]

    def get_frida_device(self) -> Any:
        """
        Get Frida device handle

        Returns:
            frida.core.Device: Selected device

        Raises:
            SessionError: If no matching device is available
        """
        if self.frida_device is not None:
            return self.frida_device

        try:
            if self.device_id:
                self.frida_device = frida.get_device(self.device_id, timeout=self.timeout)
            else:
                self.frida_device = frida.get_usb_device(timeout=self.timeout)
        except (frida.InvalidArgumentError, frida.TimedOutError, frida.TransportError) as e:
            wanted = self.device_id or "USB device"
            raise SessionError(f"Failed to connect to Frida device ({wanted}): {e}") from e

        self.logger.info(f"Connected to Frida device: {self.frida_device.name}")
        return self.frida_device


def connect_device(device_id: Optional[str] = None) -> Any:
    """
    Convenience function to get a Frida device

    Args:
        device_id: Frida device id (None for USB auto-detect)

    Returns:
        frida.core.Device: Selected device

    Raises:
        SessionError: If no matching device is available
    """
    return DeviceManager(device_id=device_id).get_frida_device()
