import logging
import sys

from voice_chat.log_format import (
    BOLD,
    CAPTURE_STATE_COLORS,
    CYAN,
    DIM,
    GREEN,
    MAGENTA,
    RED,
    RESET,
    ColoredFormatter,
)


def make_record(msg: str, *args, level: int = logging.INFO, name: str = "voice_chat.domain.capture"):
    return logging.LogRecord(name, level, __file__, 1, msg, args, None)


def render(msg: str, *args, level: int = logging.INFO) -> str:
    return ColoredFormatter(datefmt="%H:%M:%S").format(make_record(msg, *args, level=level))


class TestColoredFormatter:
    def test_state_change_colored_by_state(self):
        line = render("State: %s -> %s", "STOPPING", "STOPPED")
        assert f"{CAPTURE_STATE_COLORS['STOPPING']}STOPPING{RESET}" in line
        assert f"{CYAN}STOPPED{RESET}" in line

    def test_recording_state_stands_out(self):
        line = render("State: %s -> %s", "IDLE", "RECORDING")
        assert f"{BOLD + MAGENTA}RECORDING{RESET}" in line

    def test_submit_highlighted(self):
        assert f"{BOLD + GREEN}Submit: hello{RESET}" in render("Submit: %s", "hello")

    def test_chat_errors_are_bold_red(self):
        assert f"{BOLD + RED}Chat API error (HTTP 401){RESET}" in render(
            "Chat API error (HTTP %d)", 401, level=logging.ERROR,
        )
        assert f"{BOLD + RED}Chat request failed: boom{RESET}" in render(
            "Chat request failed: %s", "boom", level=logging.ERROR,
        )

    def test_recognition_outcome_highlighted(self):
        assert f"{CYAN}Recognition completed{RESET}" in render("Recognition completed")

    def test_debug_messages_dimmed(self):
        assert f"{DIM}Settling 0.10s before restart{RESET}" in render(
            "Settling %.2fs before restart", 0.1, level=logging.DEBUG,
        )

    def test_plain_info_left_alone(self):
        line = render("Chat orchestrator started")
        assert line.endswith(" Chat orchestrator started")

    def test_logger_name_shortened(self):
        assert "capture" in render("Recording started")
        assert "voice_chat.domain" not in render("Recording started")

    def test_exception_appended(self):
        try:
            raise RuntimeError("stream broke")
        except RuntimeError:
            record = make_record("Unexpected failure while streaming reply", level=logging.ERROR)
            record.exc_info = sys.exc_info()
        line = ColoredFormatter().format(record)
        assert "RuntimeError: stream broke" in line
