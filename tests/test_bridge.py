"""Tests for Phd2Bridge: device type checks, result mapping, timeouts."""

import asyncio

import pytest

from skyhost.exceptions import GuiderNotConnectedError, GuiderProtocolError
from skyhost.guider import (
    DirectGuider,
    GuiderProvider,
    NoGuider,
    Phd2Bridge,
    StarImage,
)
from tests.helpers import ScriptedPhd2Guider


def _bridge(responses, timeout=1.0):
    guider = ScriptedPhd2Guider(responses)
    return Phd2Bridge(lambda: guider, timeout=timeout), guider


class TestDeviceSelection:
    """Only PHD2 variants are accepted."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("device", [NoGuider(), DirectGuider(), None])
    async def test_incompatible_device_raises_not_connected(self, device):
        """Verify non-PHD2 devices are reported as "PHD2 not connected".

        DirectGuider reports connected=True but still cannot deliver star
        images, so the type check (not the connected flag) decides.
        """
        bridge = Phd2Bridge(lambda: device)

        with pytest.raises(GuiderNotConnectedError, match="^PHD2 not connected$"):
            await bridge.get_state()

    @pytest.mark.asyncio
    async def test_device_switch_takes_effect_immediately(self):
        guider = ScriptedPhd2Guider({"get_app_state": "Looping"})
        provider = GuiderProvider(guider)
        bridge = Phd2Bridge(provider.get_device)

        assert (await bridge.get_state()).state == "Looping"
        provider.set_device(None)
        with pytest.raises(GuiderNotConnectedError):
            await bridge.get_state()

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            Phd2Bridge(NoGuider, timeout=0)


class TestCommands:
    """get_state, stop_guiding and set_exposure."""

    @pytest.mark.asyncio
    async def test_get_state(self):
        bridge, _ = _bridge({"get_app_state": "Calibrating"})
        result = await bridge.get_state()
        assert result.success and result.state == "Calibrating"

    @pytest.mark.asyncio
    async def test_get_state_without_result(self):
        bridge, _ = _bridge({"get_app_state": None})
        result = await bridge.get_state()
        assert not result.success
        assert result.error == "No response from PHD2"

    @pytest.mark.asyncio
    async def test_stop_guiding(self):
        bridge, guider = _bridge({"stop_capture": 0})
        result = await bridge.stop_guiding()
        assert result.success and result.message == "Guiding stopped."
        assert guider.calls == [("stop_capture", None)]

    @pytest.mark.asyncio
    async def test_set_exposure_default_is_two_seconds(self):
        bridge, guider = _bridge({"set_exposure": 0})

        result = await bridge.set_exposure()

        assert guider.calls == [("set_exposure", [2000])]
        assert result.message == "Exposure set to 2 seconds."

    @pytest.mark.asyncio
    async def test_set_exposure_fractional_seconds(self):
        bridge, _ = _bridge({"set_exposure": 0})
        result = await bridge.set_exposure(1500)
        assert result.message == "Exposure set to 1.5 seconds."

    @pytest.mark.asyncio
    async def test_protocol_error_surfaces_verbatim(self):
        bridge, _ = _bridge(
            {"set_exposure": GuiderProtocolError("exposure out of range", code=1)}
        )
        result = await bridge.set_exposure(999999)
        assert not result.success
        assert result.error == "exposure out of range"

    @pytest.mark.asyncio
    async def test_hung_call_times_out(self):
        """Verify a call PHD2 never answers ends after the bridge timeout."""

        async def never(params):
            await asyncio.sleep(10)

        guider = ScriptedPhd2Guider()
        guider.call = lambda method, params=None: never(params)
        bridge = Phd2Bridge(lambda: guider, timeout=0.05)

        result = await bridge.get_state()

        assert not result.success
        assert "did not respond within 0.05 s" in result.error


class TestImages:
    """get_live_frame and save_frame_to_disk."""

    @pytest.mark.asyncio
    async def test_live_frame_parsed(self):
        bridge, _ = _bridge(
            {
                "get_star_image": {
                    "frame": 7,
                    "width": 4,
                    "height": 2,
                    "star_pos": [1.5, 0.5],
                    "pixels": "AAAA",
                }
            }
        )

        result = await bridge.get_live_frame()

        assert result.success
        assert result.frame == StarImage(
            width=4,
            height=2,
            star_position=(1.5, 0.5),
            pixels_base64="AAAA",
            frame_number=7,
        )

    @pytest.mark.asyncio
    async def test_live_frame_missing_pixels_gives_empty_string(self):
        bridge, _ = _bridge({"get_star_image": {"width": 4, "height": 4}})
        result = await bridge.get_live_frame()
        assert result.success
        assert result.frame.pixels_base64 == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload", [None, "garbage", {"width": "wide", "height": 4}]
    )
    async def test_malformed_live_frame(self, payload):
        bridge, _ = _bridge({"get_star_image": payload})
        result = await bridge.get_live_frame()
        assert not result.success
        assert result.error == "No image data from PHD2"

    @pytest.mark.asyncio
    async def test_live_frame_protocol_error(self):
        bridge, _ = _bridge({"get_star_image": GuiderProtocolError("no star selected")})
        result = await bridge.get_live_frame()
        assert result.error == "no star selected"

    @pytest.mark.asyncio
    async def test_save_frame(self):
        bridge, _ = _bridge({"save_image": {"filename": "/tmp/phd2_save_1.fit"}})
        result = await bridge.save_frame_to_disk()
        assert result.success and result.file_path == "/tmp/phd2_save_1.fit"

    @pytest.mark.asyncio
    async def test_save_frame_without_filename(self):
        bridge, _ = _bridge({"save_image": {}})
        result = await bridge.save_frame_to_disk()
        assert not result.success
        assert result.error == "PHD2 returned no file name"
