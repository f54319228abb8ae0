"""Discovery tests with a mocked PyVISA resource manager."""

from unittest.mock import MagicMock, patch

import pyvisa

from pylxi.discovery import Device, discover, format_device, resource_address


def _rm(resources, identities):
    rm = MagicMock()
    rm.list_resources.return_value = tuple(resources)

    def open_resource(res):
        inst = MagicMock()
        ident = identities[res]
        if isinstance(ident, Exception):
            inst.query.side_effect = ident
        else:
            inst.query.return_value = ident
        return inst

    rm.open_resource.side_effect = open_resource
    return rm


def test_resource_address():
    assert resource_address("TCPIP0::192.168.1.50::inst0::INSTR") == "192.168.1.50"
    assert resource_address("TCPIP::10.0.0.7::INSTR") == "10.0.0.7"


def test_discover_identifies_each_instrument():
    rm = _rm(["TCPIP::10.0.0.7::INSTR", "TCPIP::10.0.0.8::INSTR"],
             {"TCPIP::10.0.0.7::INSTR": "RIGOL TECHNOLOGIES,DS1104Z,X,1\n",
              "TCPIP::10.0.0.8::INSTR": "Siglent Technologies,SDS1204X-E,Y,2\n"})
    devices = discover(timeout=0.5, resource_manager=rm)
    assert devices == [
        Device("10.0.0.7", "TCPIP::10.0.0.7::INSTR", "RIGOL TECHNOLOGIES,DS1104Z,X,1"),
        Device("10.0.0.8", "TCPIP::10.0.0.8::INSTR", "Siglent Technologies,SDS1204X-E,Y,2"),
    ]
    rm.list_resources.assert_called_once_with("TCPIP?*::INSTR")
    rm.close.assert_not_called()  # caller owns an injected manager


def test_discover_skips_silent_instruments():
    err = pyvisa.errors.VisaIOError(pyvisa.constants.StatusCode.error_timeout)
    rm = _rm(["TCPIP::10.0.0.7::INSTR", "TCPIP::10.0.0.9::INSTR"],
             {"TCPIP::10.0.0.7::INSTR": err, "TCPIP::10.0.0.9::INSTR": "KEYSIGHT,DSOX1204G,Z,3"})
    devices = discover(resource_manager=rm)
    assert [d.address for d in devices] == ["10.0.0.9"]


def test_discover_sets_visa_timeout_in_ms():
    rm = _rm(["TCPIP::10.0.0.7::INSTR"], {"TCPIP::10.0.0.7::INSTR": "ID"})
    inst = MagicMock()
    inst.query.return_value = "ID"
    rm.open_resource.side_effect = None
    rm.open_resource.return_value = inst
    discover(timeout=2.5, resource_manager=rm)
    assert inst.timeout == 2500
    inst.close.assert_called_once()


def test_discover_owns_default_manager():
    rm = _rm([], {})
    with patch("pylxi.discovery.pyvisa.ResourceManager", return_value=rm) as ctor:
        assert discover() == []
    ctor.assert_called_once_with("@py")
    rm.close.assert_called_once()


def test_format_device():
    d = Device("10.0.0.7", "TCPIP::10.0.0.7::INSTR", "RIGOL TECHNOLOGIES,DS1104Z")
    assert format_device(d) == 'Found "RIGOL TECHNOLOGIES,DS1104Z" on address 10.0.0.7'
