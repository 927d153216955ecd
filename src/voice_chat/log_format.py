import logging
import re

RESET = "\033[0m"
DIM = "\033[2m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
MAGENTA = "\033[35m"
CYAN = "\033[36m"

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED + BOLD,
}

CAPTURE_STATE_COLORS = {
    "IDLE": DIM,
    "REQUESTING_PERMISSIONS": YELLOW,
    "RECORDING": BOLD + MAGENTA,
    "STOPPING": YELLOW,
    "STOPPED": CYAN,
}

STATE_CHANGE = re.compile(r"^State: (\w+) -> (\w+)$")

# Prefix -> style for the conversation's own milestones.
MESSAGE_STYLES = (
    ("Recording started", BOLD + MAGENTA),
    ("Submit:", BOLD + GREEN),
    ("Transcript:", CYAN),
    ("Recognition error", BOLD + YELLOW),
    ("Recognition", CYAN),
    ("Response complete", GREEN),
    ("Stream cancelled", BOLD + YELLOW),
    ("Cancelling", BOLD + YELLOW),
    ("Chat request failed", BOLD + RED),
    ("Chat transport error", BOLD + RED),
    ("Chat API error", BOLD + RED),
    ("Unexpected failure while streaming", BOLD + RED),
    ("Sending chat request", BLUE),
)


class ColoredFormatter(logging.Formatter):
    """Console formatter: capture state changes coloured by target state, chat milestones by kind."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        time = self.formatTime(record, self.datefmt)
        name = record.name.split(".")[-1]
        msg = self._style_message(record)
        if record.exc_info:
            msg = f"{msg}\n{RED}{self.formatException(record.exc_info)}{RESET}"

        return f"{DIM}{time}{RESET} {color}{record.levelname:<5}{RESET} {DIM}{name:<14}{RESET} {msg}"

    @staticmethod
    def _style_message(record: logging.LogRecord) -> str:
        msg = record.getMessage()

        match = STATE_CHANGE.match(msg)
        if match:
            source, target = match.groups()
            source_color = CAPTURE_STATE_COLORS.get(source, "")
            target_color = CAPTURE_STATE_COLORS.get(target, "")
            return f"State: {source_color}{source}{RESET} -> {target_color}{target}{RESET}"

        for prefix, style in MESSAGE_STYLES:
            if msg.startswith(prefix):
                return f"{style}{msg}{RESET}"

        if record.levelno == logging.DEBUG:
            return f"{DIM}{msg}{RESET}"
        if record.levelno >= logging.WARNING:
            return f"{LEVEL_COLORS[record.levelno]}{msg}{RESET}"
        return msg


def configure_logging(verbose: bool = False, log_file: str = "") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    handlers: list[logging.Handler] = [handler]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers, force=True)

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.INFO)
