"""Input and parameter checks applied before anything reaches the network."""

MIN_API_KEY_LENGTH = 20


def sanitize_text(text: str) -> str:
    return text.strip()


def is_valid_text(text: str) -> bool:
    return bool(sanitize_text(text))


def is_valid_temperature(temperature: float) -> bool:
    return 0.0 <= temperature <= 2.0


def is_valid_max_tokens(max_tokens: int) -> bool:
    return 0 < max_tokens <= 4096


def is_valid_top_p(top_p: float | None) -> bool:
    if top_p is None:
        return True
    return 0.0 < top_p <= 1.0


def is_valid_api_key_format(api_key: str) -> bool:
    # Keys are "<id>.<secret>"; anything shorter is a paste error.
    trimmed = api_key.strip()
    return len(trimmed) > MIN_API_KEY_LENGTH and "." in trimmed


def mask_secret(secret: str, visible: int = 6) -> str:
    if len(secret) <= visible:
        return "*" * len(secret)
    return secret[:visible] + "..."
