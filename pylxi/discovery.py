# discovery.py
"""
LXI instrument discovery.

PyVISA's pyvisa-py backend broadcasts a VXI-11 portmapper request on every
interface and lists the instruments that answer ('TCPIP::<ip>::INSTR').
Each one is then asked for its identity with '*IDN?'.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import pyvisa

LOG = logging.getLogger(__name__)

VISA_BACKEND = "@py"
TCPIP_QUERY = "TCPIP?*::INSTR"


@dataclass(frozen=True)
class Device:
    address: str
    resource: str
    identity: str = ""


def resource_address(resource: str) -> str:
    """'TCPIP0::192.168.1.50::inst0::INSTR' -> '192.168.1.50'."""
    parts = resource.split("::")
    return parts[1] if len(parts) > 1 else resource


def _identify(rm, resource: str, timeout: float) -> str:
    inst = rm.open_resource(resource)
    try:
        inst.timeout = int(timeout * 1000)  # VISA timeouts are in ms
        return inst.query("*IDN?").strip()
    finally:
        inst.close()


def discover(timeout: float = 1.0, resource_manager=None) -> List[Device]:
    """Find LXI instruments on the local networks.

    Instruments that are listed but do not answer '*IDN?' are logged and
    skipped; they are not reported as devices.
    """
    rm = resource_manager or pyvisa.ResourceManager(VISA_BACKEND)
    devices: List[Device] = []
    try:
        LOG.info('Searching for LXI devices - please wait...')
        try:
            resources = rm.list_resources(TCPIP_QUERY)
        except pyvisa.errors.VisaIOError as e:
            LOG.warning('Discovery broadcast failed: %s', e)
            return devices

        for res in resources:
            address = resource_address(res)
            try:
                identity = _identify(rm, res, timeout)
            except (pyvisa.errors.VisaIOError, OSError) as e:
                LOG.warning('No identity from %s: %s', address, e)
                continue
            LOG.debug('%s -> %s', res, identity)
            devices.append(Device(address=address, resource=res, identity=identity))
    finally:
        if resource_manager is None:
            rm.close()
    return devices


def format_device(device: Device) -> str:
    return f'Found "{device.identity}" on address {device.address}'
