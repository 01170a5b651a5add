# contract_ocr/utils/urls.py
from urllib.parse import urlsplit, urlunsplit

from contract_ocr.core.errors import ConfigurationError

CHAT_COMPLETIONS_PATH = "/chat/completions"


def normalize_chat_url(url: str) -> str:
    """
    Turn a configured model base URL into the chat-completions endpoint.

      https://host/v1                    -> https://host/v1/chat/completions
      https://host/v1/                   -> https://host/v1/chat/completions
      https://host/v1/chat/completions   -> unchanged
      https://host/v1/chat/completions/  -> https://host/v1/chat/completions
      https://host                       -> https://host/chat/completions
      https://host/v1?api-version=2      -> https://host/v1/chat/completions?api-version=2

    Anything without an http(s) scheme and a host raises ConfigurationError.
    """
    if url is None or not str(url).strip():
        raise ConfigurationError("Model URL is empty")

    parts = urlsplit(str(url).strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"Model URL must be an absolute http(s) URL: {url!r}")

    path = parts.path.rstrip("/")
    if not path.endswith(CHAT_COMPLETIONS_PATH):
        path = path + CHAT_COMPLETIONS_PATH

    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))
