"""Unit tests for the device identity probe."""

from collections import namedtuple
from unittest import mock

import psutil

from src.common.device_id import get_device_info, get_mac_address

Addr = namedtuple('Addr', 'family address netmask broadcast ptp')
Stats = namedtuple('Stats', 'isup duplex speed mtu flags')


def link(address):
    return Addr(psutil.AF_LINK, address, None, None, None)


def stats(flags):
    return Stats(True, 0, 0, 1500, flags)


def patch_interfaces(addrs, if_stats):
    return mock.patch.multiple(
        'src.common.device_id.psutil',
        net_if_addrs=mock.MagicMock(return_value=addrs),
        net_if_stats=mock.MagicMock(return_value=if_stats),
    )


class TestGetMacAddress:

    def test_skips_loopback(self):
        addrs = {
            'lo': [link('00:00:00:00:00:00')],
            'eth0': [link('02:42:ac:11:00:02')],
        }
        if_stats = {'lo': stats('up,loopback,running'), 'eth0': stats('up,broadcast,running')}

        with patch_interfaces(addrs, if_stats):
            assert get_mac_address() == '02:42:AC:11:00:02'

    def test_formats_uppercase_colon_separated(self):
        addrs = {'end0': [link('aa-bb-cc-0d-0e-0f')]}
        with patch_interfaces(addrs, {'end0': stats('up')}):
            assert get_mac_address() == 'AA:BB:CC:0D:0E:0F'

    def test_skips_short_hardware_addresses(self):
        addrs = {
            'tun0': [link('00:01')],
            'wlan0': [link('dc:a6:32:01:02:03')],
        }
        if_stats = {'tun0': stats('up,pointopoint'), 'wlan0': stats('up')}

        with patch_interfaces(addrs, if_stats):
            assert get_mac_address() == 'DC:A6:32:01:02:03'

    def test_ignores_non_link_addresses(self):
        inet = Addr(2, '192.168.0.10', '255.255.255.0', None, None)
        addrs = {'eth0': [inet]}

        with patch_interfaces(addrs, {'eth0': stats('up')}):
            assert get_mac_address() == ''

    def test_empty_when_only_loopback(self):
        addrs = {'lo': [link('00:00:00:00:00:00')]}
        with patch_interfaces(addrs, {'lo': stats('up,loopback')}):
            assert get_mac_address() == ''

    def test_empty_when_enumeration_fails(self):
        with mock.patch('src.common.device_id.psutil.net_if_addrs', side_effect=OSError):
            assert get_mac_address() == ''


class TestGetDeviceInfo:

    def test_contains_hostname_and_mac(self):
        with mock.patch('src.common.device_id.get_mac_address', return_value='AA:BB:CC:DD:EE:FF'):
            info = get_device_info()

        assert info['mac_address'] == 'AA:BB:CC:DD:EE:FF'
        assert info['hostname']
