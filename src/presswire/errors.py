from __future__ import annotations


class PressWireError(Exception):
    pass


class ValidationError(PressWireError, ValueError):
    pass


class InvalidUrl(ValidationError):
    def __init__(self, url: str) -> None:
        super().__init__(f"invalid_url: {url!r}")
        self.url = url


class ConfigError(PressWireError, ValueError):
    """Systemic misconfiguration: missing or expired credentials, missing permissions."""


class BlockedError(PressWireError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class SlugCollisionError(PressWireError):
    pass


class InvalidFormat(PressWireError, ValueError):
    pass


class TitleRejected(InvalidFormat):
    """Guardrails rejected every candidate title; ``content`` is the rewritten body."""

    def __init__(self, message: str, content: str | None = None) -> None:
        super().__init__(message)
        self.content = content


class UpstreamError(PressWireError):
    """Error reported by an external system, with its structured payload."""

    system = "upstream"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: int | None = None,
        subcode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.subcode = subcode

    @property
    def retryable(self) -> bool:
        return False

    def __str__(self) -> str:
        fields = [f"{self.system}_error"]
        if self.status is not None:
            fields.append(f"status={self.status}")
        if self.code is not None:
            fields.append(f"code={self.code}")
        if self.subcode is not None:
            fields.append(f"subcode={self.subcode}")
        return " ".join(fields) + f": {self.args[0]}"


class TransientUpstreamError(UpstreamError):
    """429, 5xx or timeout; safe to retry."""

    @property
    def retryable(self) -> bool:
        return True


class ScrapeError(UpstreamError):
    system = "scrape"

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status >= 500


class SourceRateLimited(TransientUpstreamError):
    """HTTP 429 from a source site: a free retry through the queue, never in-process."""

    system = "scrape"

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message, status=429)
        self.retry_after_seconds = retry_after_seconds

    @property
    def retryable(self) -> bool:
        return False


class LLMError(UpstreamError):
    system = "llm"

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class FacebookError(UpstreamError):
    system = "facebook"

    TOKEN_EXPIRED = "token_expired"
    PERMISSION = "permission"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    _TRANSIENT_CODES = {1, 2, 4, 17, 32, 341, 368, 613}
    _PERMISSION_CODES = {3, 10}
    _TOKEN_SUBCODES = {458, 459, 460, 463, 464, 467, 492}

    @property
    def kind(self) -> str:
        if self.code == 190 or self.subcode in self._TOKEN_SUBCODES:
            return self.TOKEN_EXPIRED
        if self.code in self._PERMISSION_CODES or (
            self.code is not None and 200 <= self.code <= 299
        ):
            return self.PERMISSION
        if self.code in self._TRANSIENT_CODES:
            return self.TRANSIENT
        if self.status is None or self.status == 429 or self.status >= 500:
            return self.TRANSIENT
        return self.PERMANENT

    @property
    def retryable(self) -> bool:
        return self.kind == self.TRANSIENT

    @property
    def is_config_error(self) -> bool:
        return self.kind in (self.TOKEN_EXPIRED, self.PERMISSION)
