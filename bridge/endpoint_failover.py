"""Endpoint failover — Gemini ``generateContent`` across several models.

The preferred endpoint is tried first, then the remaining candidates in
configured order.  Transport errors, non-2xx statuses, unparseable
bodies and replies without a usable candidate (safety-filtered) all mean
"try the next one".  The first endpoint that yields text becomes the
preferred one for later calls.

Pure stdlib (urllib.request + json + threading).
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import Sequence

log = logging.getLogger("sentient.endpoint_failover")

DEFAULT_BASE = "https://generativelanguage.googleapis.com/v1beta"


class EndpointError(Exception):
    """Raised when no endpoint produced a usable reply."""


class EmptyReplyError(EndpointError):
    """The endpoint answered, but the payload carried no text."""


def extract_text(response: dict) -> str:
    """Return ``candidates[0].content.parts[0].text`` or raise EmptyReplyError."""
    try:
        candidates = response.get("candidates") or []
        if not candidates:
            reason = (response.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise EmptyReplyError(f"empty reply ({reason})")
        text = candidates[0]["content"]["parts"][0]["text"]
    except (AttributeError, KeyError, IndexError, TypeError) as exc:
        raise EmptyReplyError(f"malformed reply: {exc!r}") from exc
    if not isinstance(text, str) or not text.strip():
        raise EmptyReplyError("reply text is empty")
    return text.strip()


class EndpointFailover:
    """Prioritised Gemini endpoints with a sticky preferred pointer."""

    def __init__(
        self,
        models: Sequence[str],
        base_url: str = DEFAULT_BASE,
        timeout: float = 15.0,
    ) -> None:
        if not models:
            raise ValueError("at least one endpoint is required")
        self.models = tuple(models)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._lock = threading.Lock()
        self._preferred = 0

    # -- endpoint bookkeeping --

    @property
    def preferred(self) -> str:
        with self._lock:
            return self.models[self._preferred]

    def set_preferred(self, model: str) -> None:
        with self._lock:
            self._preferred = self.models.index(model)

    def attempt_order(self) -> list[str]:
        """Preferred endpoint first, then the others in list order."""
        with self._lock:
            first = self._preferred
        return [self.models[first]] + [m for i, m in enumerate(self.models) if i != first]

    def generate_url(self, model: str, api_key: str) -> str:
        key = urllib.parse.quote(api_key, safe="")
        return f"{self.base_url}/models/{model}:generateContent?key={key}"

    def model_url(self, model: str, api_key: str) -> str:
        key = urllib.parse.quote(api_key, safe="")
        return f"{self.base_url}/models/{model}?key={key}"

    # -- HTTP --

    def _post(self, url: str, body: dict) -> dict:
        data = json.dumps(body).encode("utf-8")
        req = urllib.request.Request(
            url, data=data, headers={"Content-Type": "application/json"}, method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def generate(self, api_key: str, body: dict) -> str:
        """Send *body* to each endpoint until one returns text.

        Raises:
            EndpointError: every endpoint failed; chained to the last error.
        """
        last_error: Exception | None = None
        for model in self.attempt_order():
            try:
                text = extract_text(self._post(self.generate_url(model, api_key), body))
            except urllib.error.HTTPError as exc:
                last_error = exc
                log.warning("Endpoint %s returned HTTP %d — trying next", model, exc.code)
                continue
            except EmptyReplyError as exc:
                last_error = exc
                log.warning("Endpoint %s gave no usable reply (%s) — trying next", model, exc)
                continue
            except (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError) as exc:
                last_error = exc
                log.warning("Endpoint %s unreachable (%s) — trying next", model, exc)
                continue
            except ValueError as exc:
                last_error = exc
                log.warning("Endpoint %s sent invalid JSON — trying next", model)
                continue
            with self._lock:
                if self.models[self._preferred] != model:
                    log.info("Preferred endpoint is now %s", model)
                self._preferred = self.models.index(model)
            return text
        raise EndpointError(
            f"all {len(self.models)} endpoints failed"
        ) from last_error

    def probe(self, api_key: str) -> bool:
        """Lightweight key check: GET model info on each candidate.

        Does not touch the preferred pointer.
        """
        if not api_key or not api_key.strip():
            return False
        for model in self.models:
            req = urllib.request.Request(self.model_url(model, api_key.strip()))
            try:
                with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                    if 200 <= resp.status < 300:
                        return True
            except urllib.error.HTTPError as exc:
                if exc.code in (400, 401, 403):
                    log.info("API key rejected by %s (HTTP %d)", model, exc.code)
                    return False
                # 429 means the key was recognised but is rate limited.
                if exc.code == 429:
                    return True
                log.debug("Probe of %s failed: HTTP %d", model, exc.code)
            except (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError) as exc:
                log.debug("Probe of %s failed: %s", model, exc)
        return False
