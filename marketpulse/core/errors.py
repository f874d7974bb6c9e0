"""Error taxonomy shared by the budget guard, snapshot cache and API layer.

Every error that can reach a caller is a MarketDataError carrying its HTTP
status and machine-readable code as fields. The provider raises
ProviderHTTPError at the point it reads a non-2xx response, so nothing
downstream has to parse status codes back out of message text.
"""
from __future__ import annotations


class MarketDataError(Exception):
    kind = "server_error"
    status_code = 500
    code = "SERVER_ERROR"
    default_message = "Server error"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code, "details": {}}
        if self.detail:
            body["details"]["upstream"] = self.detail
        return body


class QuotaExhausted(MarketDataError):
    kind = "quota_exhausted"
    status_code = 429
    code = "RENTCAST_QUOTA_EXHAUSTED"
    default_message = "API quota exhausted. Cannot make new RentCast calls right now."


class UpstreamRateLimited(MarketDataError):
    kind = "upstream_rate_limited"
    status_code = 429
    code = "RENTCAST_RATE_LIMIT"
    default_message = "RentCast rate limit/quota hit. Try again later."


class UpstreamNoData(MarketDataError):
    kind = "upstream_no_data"
    status_code = 422
    code = "RENTCAST_NO_DATA"
    default_message = "No RentCast data available for that ZIP code. Try a nearby ZIP or a different market."


class UpstreamServerError(MarketDataError):
    kind = "upstream_server_error"
    status_code = 502
    code = "RENTCAST_PROVIDER_ERROR"
    default_message = "RentCast request failed. Try again later."


class UpstreamUnknown(MarketDataError):
    kind = "upstream_unknown"
    status_code = 502
    code = "UPSTREAM_ERROR"
    default_message = "Upstream request failed. Try again later."


class ValidationError(MarketDataError):
    kind = "validation"
    status_code = 400
    code = "INVALID_ZIP"
    default_message = "zip (5 digits) is required"

    def __init__(self, message: str | None = None, *, code: str | None = None, detail: str | None = None):
        super().__init__(message, detail=detail)
        if code:
            self.code = code


class NotFound(MarketDataError):
    kind = "not_found"
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class ConfigError(MarketDataError):
    kind = "config"
    status_code = 500
    code = "SERVER_ERROR"
    default_message = "Server misconfigured"


# ── Raised by collaborators, classified by the budget guard ──────────────────


class ProviderHTTPError(Exception):
    """Non-2xx response from the market data provider."""

    def __init__(self, status: int, reason: str = "", body: str = ""):
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(f"{status} {reason}: {body or 'No body'}")


class MalformedResponse(Exception):
    """Provider answered 2xx with a payload we cannot read."""


class GeocodingError(Exception):
    """Geocoder infrastructure failure (not an unknown ZIP)."""
