"""Unit tests for display helpers.

Covers video output selection, X authority discovery, the player environment,
xrandr resolution switching and framebuffer blanking.
"""

import os
import subprocess
from unittest import mock

import pytest

from src.agent import display


@pytest.fixture
def x_socket(tmp_path):
    path = tmp_path / "X0"
    path.write_text("")
    return str(path)


@pytest.fixture
def no_socket(tmp_path):
    return str(tmp_path / "missing-X0")


class TestVideoOutput:

    def test_override_wins(self, no_socket):
        assert display.video_output("gl", {"DISPLAY": ":1"}, no_socket) == "gl"

    def test_display_env_means_x11(self, no_socket):
        assert display.video_output("", {"DISPLAY": ":0"}, no_socket) == "x11"

    def test_wayland_means_x11(self, no_socket):
        assert display.video_output("", {"WAYLAND_DISPLAY": "wayland-0"}, no_socket) == "x11"

    def test_socket_means_x11(self, x_socket):
        assert display.video_output("", {}, x_socket) == "x11"

    def test_console_falls_back_to_fbdev2(self, no_socket):
        assert display.video_output("", {}, no_socket) == "fbdev2"


class TestXDisplay:

    def test_inherited(self, no_socket):
        assert display.x_display({"DISPLAY": ":2"}, no_socket) == ":2"

    def test_synthesized_from_socket(self, x_socket):
        assert display.x_display({}, x_socket) == ":0"

    def test_none(self, no_socket):
        assert display.x_display({}, no_socket) == ""


class TestXauthorityPath:

    def test_env_value_used_when_present(self, tmp_path, no_socket):
        xauth = tmp_path / "auth"
        xauth.write_text("")
        env = {"XAUTHORITY": str(xauth)}
        assert display.xauthority_path(env, no_socket, fallbacks=()) == str(xauth)

    def test_sudo_user_home(self, tmp_path, no_socket):
        home = tmp_path / "home"
        (home / "pi").mkdir(parents=True)
        (home / "pi" / ".Xauthority").write_text("")
        env = {"XAUTHORITY": str(tmp_path / "gone"), "SUDO_USER": "pi"}

        result = display.xauthority_path(env, no_socket, home_root=str(home), fallbacks=())

        assert result == str(home / "pi" / ".Xauthority")

    def test_default_user_home(self, tmp_path, no_socket):
        home = tmp_path / "home"
        (home / "user").mkdir(parents=True)
        (home / "user" / ".Xauthority").write_text("")

        result = display.xauthority_path({}, no_socket, home_root=str(home), fallbacks=())

        assert result == str(home / "user" / ".Xauthority")

    def test_socket_owner_run_dir(self, tmp_path, x_socket):
        uid = os.stat(x_socket).st_uid
        run_user = tmp_path / "run"
        (run_user / str(uid)).mkdir(parents=True)
        (run_user / str(uid) / ".Xauthority").write_text("")

        result = display.xauthority_path({}, x_socket, home_root=str(tmp_path / "h"),
                                         run_user_root=str(run_user), fallbacks=())

        assert result == str(run_user / str(uid) / ".Xauthority")

    def test_display_manager_fallback(self, tmp_path, no_socket):
        lightdm = tmp_path / "lightdm.Xauthority"
        lightdm.write_text("")

        result = display.xauthority_path({}, no_socket, home_root=str(tmp_path / "h"),
                                         fallbacks=(str(tmp_path / "x"), str(lightdm)))

        assert result == str(lightdm)

    def test_nothing_found(self, tmp_path, no_socket):
        assert display.xauthority_path({}, no_socket, home_root=str(tmp_path),
                                       fallbacks=()) == ""


class TestPlayerEnvironment:

    def test_not_x11_inherits(self, no_socket):
        assert display.player_environment("fbdev2", {"DISPLAY": ":0"}, no_socket) is None

    def test_x11_without_display_inherits(self, no_socket):
        assert display.player_environment("x11", {}, no_socket) is None

    def test_x11_synthesizes_display(self, x_socket):
        with mock.patch.object(display, 'xauthority_path', return_value="/tmp/xa"):
            env = display.player_environment("x11", {"PATH": "/bin"}, x_socket)

        assert env["DISPLAY"] == ":0"
        assert env["XAUTHORITY"] == "/tmp/xa"
        assert env["PATH"] == "/bin"

    def test_x11_without_xauthority_still_returns_env(self, x_socket):
        with mock.patch.object(display, 'xauthority_path', return_value=""):
            env = display.player_environment("x11", {"XAUTHORITY": "/stale"}, x_socket)

        assert env["DISPLAY"] == ":0"
        assert "XAUTHORITY" not in env


XRANDR_QUERY = """Screen 0: minimum 320 x 200, current 1920 x 1080, maximum 8192 x 8192
HDMI-2 disconnected (normal left inverted right x axis y axis)
HDMI-1 connected primary 1920x1080+0+0 (normal left inverted right x axis y axis)
   1920x1080     60.00*+
   1280x720      60.00
"""


class TestSetDisplayResolution:

    def test_connected_output_parsing(self):
        assert display.connected_output(XRANDR_QUERY) == "HDMI-1"
        assert display.connected_output("nothing here") == ""

    def test_no_display_does_nothing(self, no_socket):
        with mock.patch('src.agent.display.subprocess.run') as run:
            assert display.set_display_resolution({}, no_socket) is False
        run.assert_not_called()

    def test_first_mode_applied(self, no_socket):
        query = subprocess.CompletedProcess([], 0, stdout=XRANDR_QUERY)
        ok = subprocess.CompletedProcess([], 0)

        with mock.patch('src.agent.display.subprocess.run', side_effect=[query, ok]) as run:
            assert display.set_display_resolution({"DISPLAY": ":0"}, no_socket) is True

        assert run.call_args_list[1][0][0] == ["xrandr", "--output", "HDMI-1", "--mode", "1280x720"]

    def test_falls_back_through_modes(self, no_socket):
        query = subprocess.CompletedProcess([], 0, stdout=XRANDR_QUERY)
        fail = subprocess.CompletedProcess([], 1)
        ok = subprocess.CompletedProcess([], 0)

        with mock.patch('src.agent.display.subprocess.run',
                        side_effect=[query, fail, fail, ok]) as run:
            assert display.set_display_resolution({"DISPLAY": ":0"}, no_socket) is True

        modes = [c[0][0][-1] for c in run.call_args_list[1:]]
        assert modes == ["1280x720", "1280x720_60.00", "1280x720_60"]

    def test_xrandr_missing_is_silent(self, no_socket):
        with mock.patch('src.agent.display.subprocess.run', side_effect=FileNotFoundError):
            assert display.set_display_resolution({"DISPLAY": ":0"}, no_socket) is False


@pytest.fixture
def fb_sysfs(tmp_path):
    sysfs = tmp_path / "fb0"
    sysfs.mkdir()
    return sysfs


class TestFramebuffer:

    def test_size_from_virtual_size(self, fb_sysfs):
        (fb_sysfs / "virtual_size").write_text("640,480\n")
        (fb_sysfs / "bits_per_pixel").write_text("32\n")
        assert display.framebuffer_size(str(fb_sysfs)) == 640 * 480 * 4

    def test_size_from_width_height(self, fb_sysfs):
        (fb_sysfs / "width").write_text("100")
        (fb_sysfs / "height").write_text("50")
        (fb_sysfs / "bits_per_pixel").write_text("16")
        assert display.framebuffer_size(str(fb_sysfs)) == 100 * 50 * 2

    def test_missing_bpp_gives_zero(self, fb_sysfs):
        (fb_sysfs / "virtual_size").write_text("640,480")
        assert display.framebuffer_size(str(fb_sysfs)) == 0

    def test_oversized_rejected(self, fb_sysfs):
        (fb_sysfs / "virtual_size").write_text("8192,8192")
        (fb_sysfs / "bits_per_pixel").write_text("32")
        assert display.framebuffer_size(str(fb_sysfs)) == 0

    def test_clear_writes_zeros(self, fb_sysfs, tmp_path):
        (fb_sysfs / "virtual_size").write_text("300,300")
        (fb_sysfs / "bits_per_pixel").write_text("32")
        device = tmp_path / "fb-device"
        device.write_bytes(b"\xff" * 10)

        assert display.clear_framebuffer(str(device), str(fb_sysfs)) is True

        data = device.read_bytes()
        assert len(data) == 300 * 300 * 4
        assert data.count(0) == len(data)

    def test_clear_skipped_without_sysfs(self, tmp_path):
        device = tmp_path / "fb-device"
        assert display.clear_framebuffer(str(device), str(tmp_path / "none")) is False
        assert not device.exists()


class TestClearConsole:

    def test_first_openable_device_used(self, tmp_path):
        tty = tmp_path / "tty0"
        tty.write_text("")
        devices = (str(tmp_path / "nodir" / "tty1"), str(tty))

        assert display.clear_console(devices) == str(tty)
        assert tty.read_text() == display.CONSOLE_CLEAR

    def test_none_openable(self, tmp_path):
        assert display.clear_console((str(tmp_path / "a" / "b"),)) is None
