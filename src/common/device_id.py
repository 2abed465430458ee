"""
Device identity.
The agent is identified upstream by the MAC address of its first physical interface.
"""

import socket
from typing import Optional

import psutil


def _is_loopback(name: str, stats: dict) -> bool:
    stat = stats.get(name)
    flags = getattr(stat, 'flags', '') if stat is not None else ''
    return 'loopback' in flags.split(',')


def _parse_hw_address(address: str) -> Optional[bytes]:
    parts = address.replace('-', ':').split(':')
    try:
        raw = bytes(int(part, 16) for part in parts if part)
    except ValueError:
        return None
    return raw


def get_mac_address() -> str:
    """
    Get the MAC of the first non-loopback interface.

    Returns:
        Address formatted "AA:BB:CC:DD:EE:FF", or "" when no interface qualifies
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError:
        return ""

    for name, entries in addrs.items():
        if _is_loopback(name, stats):
            continue
        for entry in entries:
            if entry.family != psutil.AF_LINK or not entry.address:
                continue
            raw = _parse_hw_address(entry.address)
            if raw is None or len(raw) < 6:
                continue
            return ':'.join('%02X' % b for b in raw[:6])

    return ""


def get_device_info() -> dict:
    """
    Get device information: hostname and MAC address.
    """
    return {
        "hostname": socket.gethostname(),
        "mac_address": get_mac_address(),
    }
