"""
Printer Configuration Validation
================================

Turns user-supplied printer settings into a validated ``PrinterConfig``.

Accepted input is either a ``PrinterConfig`` (re-checked) or a flat dict as
produced by the settings form or the JSON store. Both snake_case and
camelCase keys are accepted (``vendor_id`` / ``vendorId``).
"""

import ipaddress
import re
import uuid
from typing import Any, Dict, Mapping, Union

from .config import DEFAULT_PRINT_WIDTH, ETHERNET_PORT
from .exceptions import ValidationError
from .models import (
    PrinterType, PrinterConfig, EthernetParams, UsbParams, BluetoothParams,
)

MAC_RE = re.compile(r'^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$')
HEX_RE = re.compile(r'^[0-9A-Fa-f]+$')

_ALIASES = {
    'vendorId': 'vendor_id',
    'productId': 'product_id',
    'macAddress': 'mac_address',
    'printWidth': 'print_width',
    'printer_type': 'type',
}


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in data.items():
        normalized[_ALIASES.get(key, key)] = value
    return normalized


def parse_int(value: Any, field: str) -> int:
    """Parse an integer given as int, decimal string or hex string.

    ``'0x0483'`` and ``'04b8'`` are read as hex, ``'1155'`` as decimal.
    """
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValidationError(f'{field} is required', field)
        if text.lower().startswith('0x') and HEX_RE.match(text[2:]):
            return int(text[2:], 16)
        if text.isdigit():
            return int(text, 10)
        if HEX_RE.match(text):
            return int(text, 16)
    if value is None:
        raise ValidationError(f'{field} is required', field)
    raise ValidationError(f'{field} is not a valid integer: {value!r}', field)


def _parse_port(value: Any) -> int:
    if value is None or value == '':
        return ETHERNET_PORT
    port = parse_int(value, 'port')
    if not 0 < port <= 65535:
        raise ValidationError(f'port must be in 1..65535, got {port}', 'port')
    return port


def _parse_ip(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('ip is required for ethernet printers', 'ip')
    try:
        return str(ipaddress.IPv4Address(value.strip()))
    except ipaddress.AddressValueError:
        raise ValidationError(f'ip is not an IPv4 address: {value!r}', 'ip') from None


def _parse_usb_id(value: Any, field: str) -> int:
    usb_id = parse_int(value, field)
    if not 0 <= usb_id <= 0xFFFF:
        raise ValidationError(f'{field} out of range: {usb_id}', field)
    return usb_id


def _parse_mac(value: Any) -> str:
    if not isinstance(value, str) or not MAC_RE.match(value.strip()):
        raise ValidationError(f'mac_address is not a MAC address: {value!r}', 'mac_address')
    return value.strip().upper()


def _parse_type(value: Any) -> PrinterType:
    try:
        return PrinterType(value)
    except ValueError:
        valid = [t.value for t in PrinterType]
        raise ValidationError(f'Invalid printer type {value!r}. Valid: {valid}', 'type') from None


def _parse_print_width(value: Any) -> int:
    if value is None or value == '':
        return DEFAULT_PRINT_WIDTH
    width = parse_int(value, 'print_width')
    if width <= 0:
        raise ValidationError(f'print_width must be positive, got {width}', 'print_width')
    return width


def _parse_enabled(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    raise ValidationError(f'enabled must be a boolean, got {value!r}', 'enabled')


def _parse_transport(printer_type: PrinterType, data: Dict[str, Any]):
    if printer_type is PrinterType.ETHERNET:
        return EthernetParams(ip=_parse_ip(data.get('ip')), port=_parse_port(data.get('port')))
    if printer_type is PrinterType.USB:
        return UsbParams(
            vendor_id=_parse_usb_id(data.get('vendor_id'), 'vendor_id'),
            product_id=_parse_usb_id(data.get('product_id'), 'product_id'),
        )
    if printer_type is PrinterType.BLUETOOTH:
        return BluetoothParams(mac_address=_parse_mac(data.get('mac_address')))
    raise ValidationError(f'Unsupported printer type: {printer_type}', 'type')


def generate_printer_id() -> str:
    """Generate a printer id for configs submitted without one."""
    return f'printer_{str(uuid.uuid4())[:8]}'


def parse_printer_config(data: Union[PrinterConfig, Mapping[str, Any]],
                         printer_id: str = None) -> PrinterConfig:
    """
    Validate printer settings.

    Args:
        data: PrinterConfig or flat settings dict
        printer_id: Overrides the id in ``data`` (used by updates)

    Returns:
        A validated, normalized PrinterConfig

    Raises:
        ValidationError: On the first missing or malformed field
    """
    if isinstance(data, PrinterConfig):
        data = data.to_dict()
    if not isinstance(data, Mapping):
        raise ValidationError('Printer configuration must be a mapping')

    data = _normalize_keys(data)

    config_id = printer_id if printer_id is not None else data.get('id')
    if config_id is None or config_id == '':
        config_id = generate_printer_id()
    if not isinstance(config_id, str):
        raise ValidationError(f'id must be a string, got {config_id!r}', 'id')

    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Printer name required', 'name')

    printer_type = _parse_type(data.get('type'))

    return PrinterConfig(
        id=config_id,
        name=name.strip(),
        transport=_parse_transport(printer_type, data),
        enabled=_parse_enabled(data.get('enabled')),
        print_width=_parse_print_width(data.get('print_width')),
    )
