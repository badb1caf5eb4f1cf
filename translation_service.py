"""HTTP client for the popup's translation endpoint."""

from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional, Tuple


logger = logging.getLogger("popup_translator.translation")

DEFAULT_ENDPOINT = "http://localhost:8080/api/v1/translate"


class TranslationError(RuntimeError):
    """Raised when the translation service cannot complete a request."""


class InvalidEndpointError(TranslationError):
    """The configured endpoint is not an absolute http(s) URL."""


class RequestFailedError(TranslationError):
    """The request could not be delivered or timed out."""


class UnexpectedStatusError(TranslationError):
    """The endpoint answered with a status outside 200-299."""

    def __init__(self, status: int) -> None:
        super().__init__(f"Unexpected HTTP status {status} from translation endpoint")
        self.status = status


class DecodingError(TranslationError):
    """The response body is not the expected JSON object."""


@dataclass(frozen=True)
class TranslationResult:
    text: str
    source_lang: str
    target_lang: str


class TranslationClient:
    """POSTs ``{text, source_lang, target_lang}`` and decodes the same shape.

    The client remembers only the most recent successful call; repeating it
    with identical arguments returns the remembered response without a
    network round-trip.
    """

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout: float = 10.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._cache_lock = threading.Lock()
        self._last_request: Optional[Tuple[str, str, str]] = None
        self._last_response: Optional[TranslationResult] = None

    def translate(self, text: str, source_lang: str, target_lang: str) -> TranslationResult:
        key = (text, source_lang, target_lang)
        with self._cache_lock:
            if self._last_request == key and self._last_response is not None:
                logger.debug("Reusing cached translation for %r", text[:40])
                return self._last_response

        result = self._post(text, source_lang, target_lang)

        with self._cache_lock:
            self._last_request = key
            self._last_response = result
        return result

    def _post(self, text: str, source_lang: str, target_lang: str) -> TranslationResult:
        parsed = urllib.parse.urlsplit(self.endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidEndpointError(f"Invalid translation endpoint: {self.endpoint!r}")

        body = json.dumps(
            {"text": text, "source_lang": source_lang, "target_lang": target_lang},
            ensure_ascii=False,
        ).encode("utf-8")
        request = urllib.request.Request(
            self.endpoint,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = getattr(response, "status", 200)
                payload = response.read()
        except urllib.error.HTTPError as exc:
            raise UnexpectedStatusError(exc.code) from exc
        except urllib.error.URLError as exc:
            raise RequestFailedError(
                f"Network error while contacting translation endpoint: {exc.reason}"
            ) from exc
        except TimeoutError as exc:
            raise RequestFailedError("Request to translation endpoint timed out") from exc
        except OSError as exc:
            raise RequestFailedError(f"Network error while contacting translation endpoint: {exc}") from exc
        except http.client.HTTPException as exc:
            raise RequestFailedError(
                f"Malformed HTTP exchange with translation endpoint: {exc!r}"
            ) from exc

        if not 200 <= status <= 299:
            raise UnexpectedStatusError(status)

        return _decode_response(payload)


def _decode_response(payload: bytes) -> TranslationResult:
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodingError("Invalid response from translation endpoint") from exc

    if not isinstance(data, dict):
        raise DecodingError("Unexpected translation response structure")

    fields = []
    for name in ("text", "source_lang", "target_lang"):
        value = data.get(name)
        if not isinstance(value, str):
            raise DecodingError(f"Translation response is missing {name!r}")
        fields.append(value)
    return TranslationResult(*fields)
