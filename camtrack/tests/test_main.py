"""
test_main.py — CLI Argument Handling
=====================================
"""

import pytest

from camtrack import config
from camtrack.main import build_parser, main, params_from_args, parse_size


class TestParseSize:

    def test_valid(self):
        assert parse_size("640x480") == (640, 480)
        assert parse_size("1280X720") == (1280, 720)

    @pytest.mark.parametrize("text", ["640", "640x", "axb", "0x480", "640x-1", "1x2x3"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_size(text)


class TestParser:

    def test_defaults_come_from_config(self):
        args = build_parser().parse_args(["file", "in.mp4", "out.mp4"])
        params = params_from_args(args)
        assert params.zoom_factor == config.ZOOM_FACTOR
        assert params.low_pass_coefficient == config.LOW_PASS_COEFFICIENT
        assert args.debug_video is None

    def test_overrides(self):
        args = build_parser().parse_args([
            "--zoom", "3", "--vertical-bias", "0.25", "--low-pass", "0.5",
            "live", "--camera", "1", "--device", "/dev/video9",
        ])
        params = params_from_args(args)
        assert params.zoom_factor == 3.0
        assert params.vertical_bias == 0.25
        assert params.low_pass_coefficient == 0.5
        assert args.camera == 1
        assert args.device == "/dev/video9"

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_invalid_params_exit_with_usage_error(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["--zoom", "-1", "file", "in.mp4", "out.mp4"])
        assert excinfo.value.code == 2

    def test_odd_output_size_exits(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["--output-size", "641x480", "file", "in.mp4", "out.mp4"])
        assert excinfo.value.code == 2

    def test_invalid_output_size_exits(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["--output-size", "big", "file", "in.mp4", "out.mp4"])
        assert excinfo.value.code == 2
