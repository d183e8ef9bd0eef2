"""Tests for command building, status parsing and color conversion."""
from __future__ import annotations

import logging

import pytest

import yeelight_protocol as protocol
from yeelight_protocol import Hub, Light, ParseError, ProtocolError

SAMPLE_REPLY = "GLB 3CB8,1,1,80,255,0,0,100,0;50F5,1,0,60,0,255,0,0,0;\r\n"


def test_discovery_request_payload() -> None:
    assert protocol.create_discovery_request() == (
        b"M-SEARCH * HTTP/1.1\r\n HOST:239.255.255.250:1900\r\n"
        b' MAN:"ssdp:discover"\r\n ST:yeelink:yeebox\r\n'
        b" MAC:00000001\r\n MX:3\r\n\n\r\n"
    )


def test_query_commands() -> None:
    assert protocol.create_get_lights_command() == "GL\r\n"
    assert protocol.create_heartbeat_command() == "HB\r\n"


def test_set_light_command() -> None:
    assert protocol.create_set_light_command("50F5", 200, 100, 255, 90) == "C 50F5,200,100,255,90,0\r\n"


def test_set_level_command_keeps_empty_fields() -> None:
    assert protocol.create_set_level_command("3CB8", 100) == "C 3CB8,,,,100,\r\n"
    assert protocol.create_set_level_command("3CB8", 0) == "C 3CB8,,,,0,\r\n"


def test_set_color_command_leaves_level_empty() -> None:
    assert protocol.create_set_color_command("3CB8", 1, 2, 3) == "C 3CB8,1,2,3,,\r\n"


def test_control_command_all_fields_empty() -> None:
    assert protocol.create_control_command("3CB8") == "C 3CB8,,,,,\r\n"


def test_all_off_command_uses_broadcast_id() -> None:
    assert protocol.create_all_off_command() == "C G000,0,0,0,0,0\r\n"


def test_parse_lights_sample() -> None:
    lights = protocol.parse_lights(SAMPLE_REPLY)
    assert lights == [
        Light("3CB8", kind=1, online=1, link_quality=80, red=255, green=0, blue=0, level=100, effect=0),
        Light("50F5", kind=1, online=0, link_quality=60, red=0, green=255, blue=0, level=0, effect=0),
    ]


def test_parse_lights_short_header() -> None:
    lights = protocol.parse_lights("GL 3CB8,1,1,80,1,2,3,40,0;\r\n")
    assert [light.id for light in lights] == ["3CB8"]
    assert lights[0].rgb == (1, 2, 3)


def test_parse_lights_header_without_space() -> None:
    lights = protocol.parse_lights("GL3CB8,1,1,80,1,2,3,40,0;")
    assert lights[0].id == "3CB8"


def test_parse_lights_custom_header() -> None:
    lights = protocol.parse_lights("STATUS 3CB8,1,1,80,1,2,3,40,0;\r\n", header_prefixes=("STATUS",))
    assert lights[0].level == 40


def test_parse_lights_unknown_header() -> None:
    with pytest.raises(ProtocolError):
        protocol.parse_lights("XYZ 3CB8,1,1,80,1,2,3,40,0;\r\n")


def test_parse_lights_empty_reply(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="yeelight_protocol"):
        assert protocol.parse_lights("") == []
    assert "Empty status reply" in caplog.text


def test_parse_lights_header_only() -> None:
    assert protocol.parse_lights("GLB \r\n") == []


def test_parse_lights_bad_number_fails_whole_reply() -> None:
    with pytest.raises(ParseError) as excinfo:
        protocol.parse_lights("GLB 3CB8,1,1,80,255,0,0,100,0;50F5,1,0,60,zz,255,0,0,0;\r\n")
    assert excinfo.value.light_id == "50F5"
    assert excinfo.value.field_name == "red"
    assert excinfo.value.value == "zz"


def test_parse_lights_wrong_field_count() -> None:
    with pytest.raises(ProtocolError):
        protocol.parse_lights("GLB 3CB8,1,1,80,255,0,0;\r\n")


def test_parse_lights_passes_out_of_range_values() -> None:
    light = protocol.parse_lights("GLB 3CB8,7,1,180,300,0,0,250,9;\r\n")[0]
    assert light.red == 300
    assert light.level == 250
    assert light.effect == 9


def test_command_values_survive_reply_parsing() -> None:
    command = protocol.create_set_light_command("A1B2", 12, 34, 56, 78)
    fields = command[len("C "):-len("\r\n")]
    light_id, red, green, blue, level, effect = fields.split(",")
    reply = f"GLB {light_id},1,1,99,{red},{green},{blue},{level},{effect};\r\n"
    light = protocol.parse_lights(reply)[0]
    assert (light.id, light.red, light.green, light.blue, light.level) == ("A1B2", 12, 34, 56, 78)


def test_light_helpers() -> None:
    light = Light("3CB8", 1, 1, 80, 10, 20, 30, 45, 0)
    assert light.is_on
    assert light.rgb == (10, 20, 30)
    assert "3CB8" in str(light)
    assert not Light("50F5", 1, 1, 80, 0, 0, 0, 0, 0).is_on


def test_hub_with_address_returns_copy() -> None:
    hub = Hub("192.168.1.59", light_ids=("3CB8",))
    moved = hub.with_address("192.168.1.60")
    assert hub.address == "192.168.1.59"
    assert moved.address == "192.168.1.60"
    assert moved.light_ids == ("3CB8",)


@pytest.mark.parametrize(
    "hue, expected",
    [
        (0.0, (255, 0, 0)),
        (1 / 6, (255, 255, 0)),
        (2 / 6, (0, 255, 0)),
        (3 / 6, (0, 255, 255)),
        (4 / 6, (0, 0, 255)),
        (5 / 6, (255, 0, 255)),
        (1.0, (255, 0, 0)),
    ],
)
def test_hsv_to_rgb_sector_edges(hue: float, expected: tuple) -> None:
    assert protocol.hsv_to_rgb(hue, 1, 1) == expected


def test_hsv_to_rgb_midpoints_and_rounding() -> None:
    assert protocol.hsv_to_rgb(1 / 12, 1, 1) == (255, 128, 0)
    assert protocol.hsv_to_rgb(0, 0, 0.5) == (128, 128, 128)
    assert protocol.hsv_to_rgb(0.25, 0, 0) == (0, 0, 0)


def test_hsv_to_rgb_clamps_out_of_range_values() -> None:
    assert protocol.hsv_to_rgb(0, 1, 2) == (255, 0, 0)
    assert protocol.hsv_to_rgb(0, 2, 1) == (255, 0, 0)


def test_temperature_neutral_white() -> None:
    assert protocol.temperature_to_rgb(6600) == (255, 255, 255)


def test_temperature_candle_is_red() -> None:
    red, green, blue = protocol.temperature_to_rgb(1000)
    assert red == 255
    assert blue == 0
    assert green < 100


def test_temperature_blue_sky() -> None:
    red, green, blue = protocol.temperature_to_rgb(40000)
    assert blue == 255
    assert 0 <= red < 255
    assert 0 <= green < 255
    assert red < green


def test_temperature_channels_in_range() -> None:
    for kelvin in range(1000, 40001, 500):
        assert all(0 <= c <= 255 for c in protocol.temperature_to_rgb(kelvin))


def test_temperature_out_of_range() -> None:
    with pytest.raises(ValueError):
        protocol.temperature_to_rgb(500)
    with pytest.raises(ValueError):
        protocol.temperature_to_rgb(50000)


def test_parse_lights_bare_terminator(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="yeelight_protocol"):
        assert protocol.parse_lights("\r\n") == []
    assert "Empty status reply" in caplog.text
