"""Shared request pipeline for NHS API clients.

Every outbound call goes: rate limiter -> response cache (reads) -> token
cache -> HTTP transport -> response cache store -> audit -> caller.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from rxautomate.audit.actions import AuditAction, AuditCategory
from rxautomate.audit.writer import AuditWriter
from rxautomate.config import Settings
from rxautomate.errors import UpstreamApiError, UpstreamTimeoutError
from rxautomate.nhs import fhir
from rxautomate.nhs.nhs_number import mask_nhs_number
from rxautomate.nhs.rate_limiter import RateLimiter
from rxautomate.nhs.response_cache import ResponseCache
from rxautomate.nhs.token_cache import TokenCache
from rxautomate.services.metrics import record_nhs_api_call

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamApiError) and exc.retryable


class NHSApiClient:
    """Base class for NHS REST clients.

    Subclasses set ``scopes`` for their OAuth2 token and ``audit_category``
    for the audit rows their calls produce.
    """

    scopes: tuple[str, ...] = ()
    audit_category: AuditCategory = AuditCategory.NHS_API
    content_type: str = "application/json"

    def __init__(
        self,
        settings: Settings,
        base_url: str,
        rate_limiter: RateLimiter,
        cache: ResponseCache,
        audit_writer: AuditWriter,
        transport: httpx.AsyncBaseTransport | None = None,
        token_cache: TokenCache | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._audit = audit_writer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(
                settings.nhs_timeout_seconds,
                connect=settings.nhs_connect_timeout_seconds,
            ),
            transport=transport,
        )
        self._tokens = token_cache or TokenCache(
            self._client,
            token_url=settings.nhs_auth_url,
            client_id=settings.nhs_client_id,
            client_secret=settings.nhs_client_secret,
            scopes=self.scopes,
            safety_margin=settings.token_safety_margin_seconds,
        )
        self._retry_wait = retry_wait or (
            wait_exponential(multiplier=1, min=1, max=8) + wait_random(0, 1)
        )

    async def _call(
        self,
        operation: AuditAction,
        category: str,
        method: str,
        path: str,
        resource_id: str,
        actor: str | None = None,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cache_key: str | None = None,
        ttl: float | None = None,
        resource_type: str | None = None,
        nhs_number: str | None = None,
        prescription_id: str | None = None,
        audit_details: dict[str, Any] | None = None,
    ) -> Any:
        await self._rate_limiter.enforce(category)

        if cache_key is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        # Reads (GET, or cacheable POST queries) may be retried; mutations never are
        idempotent = method == "GET" or cache_key is not None
        try:
            if idempotent:
                data, request_id = await self._send_with_retry(
                    operation, category, method, path, params, json, headers
                )
            else:
                data, request_id = await self._send(
                    operation, category, method, path, params, json, headers
                )
        except UpstreamApiError as exc:
            if exc.upstream_status != 429:
                error_details = {
                    "context": operation.value,
                    "statusCode": exc.upstream_status,
                    "errorCode": exc.error_code,
                }
                if nhs_number:
                    await self._audit.log_nhs_api_action(
                        AuditAction.API_ERROR, nhs_number, details=error_details, user_id=actor
                    )
                else:
                    await self._audit.log_action(
                        AuditAction.API_ERROR,
                        AuditCategory.NHS_API,
                        user_id=actor,
                        details=error_details,
                        prescription_id=prescription_id,
                    )
            raise

        if resource_type is not None:
            data = self._check_shape(operation, data, resource_type)

        if cache_key is not None and ttl is not None:
            self._cache.set(cache_key, data, ttl)

        details = {"requestId": request_id, **(audit_details or {})}
        if resource_type == "Bundle":
            details["count"] = data.get("total")
        await self._audit.log_action(
            operation,
            self.audit_category,
            user_id=actor,
            details=details,
            nhs_number=nhs_number,
            prescription_id=prescription_id,
        )
        logger.info(
            "NHS API activity %s on %s",
            operation.value,
            mask_nhs_number(resource_id) if nhs_number else resource_id,
        )
        return data

    async def _send_with_retry(self, operation: AuditAction, *args: Any) -> tuple[Any, str]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.nhs_get_max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "Retrying %s (attempt %d): %s",
                operation.value,
                rs.attempt_number,
                rs.outcome.exception(),
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(operation, *args)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(
        self,
        operation: AuditAction,
        category: str,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> tuple[Any, str]:
        token = await self._tokens.get_token()
        request_id = str(uuid.uuid4())
        headers = {
            "Authorization": f"Bearer {token.value}",
            "Accept": self.content_type,
            "X-Request-ID": request_id,
            "X-Correlation-ID": request_id,
        }
        if json is not None:
            headers["Content-Type"] = self.content_type
        if self._settings.nhs_api_key:
            headers["apikey"] = self._settings.nhs_api_key
        headers.update(extra_headers or {})

        start = time.monotonic()
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as exc:
            record_nhs_api_call(category, operation.value, 504, int((time.monotonic() - start) * 1000))
            logger.warning("NHS API %s timed out", operation.value)
            raise UpstreamTimeoutError(operation.value) from exc
        except httpx.TransportError as exc:
            logger.warning("NHS API %s transport error: %s", operation.value, exc)
            raise UpstreamApiError(
                operation.value, 503, f"NHS API unreachable ({operation.value}): {exc}"
            ) from exc

        record_nhs_api_call(
            category, operation.value, response.status_code, int((time.monotonic() - start) * 1000)
        )

        if response.status_code == 401:
            self._tokens.invalidate()
        if response.is_error:
            raise self._upstream_error(operation, response)

        try:
            return response.json(), request_id
        except ValueError as exc:
            raise UpstreamApiError(
                operation.value, response.status_code, "NHS API returned a non-JSON body"
            ) from exc

    @staticmethod
    def _upstream_error(operation: AuditAction, response: httpx.Response) -> UpstreamApiError:
        message = response.reason_phrase or f"HTTP {response.status_code}"
        error_code = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error_code = body.get("errorCode")
            issues = body.get("issue") or []
            if body.get("message"):
                message = body["message"]
            elif issues and isinstance(issues[0], dict) and issues[0].get("diagnostics"):
                message = issues[0]["diagnostics"]
        logger.error(
            "NHS API error (%s): status=%d errorCode=%s",
            operation.value,
            response.status_code,
            error_code,
        )
        return UpstreamApiError(operation.value, response.status_code, message, error_code)

    @staticmethod
    def _check_shape(operation: AuditAction, data: Any, resource_type: str) -> Any:
        errors = fhir.shape_errors(data, resource_type)
        if errors:
            logger.error("Malformed %s from %s: %s", resource_type, operation.value, errors)
            raise UpstreamApiError(
                operation.value, 502, f"Malformed {resource_type} resource: {errors[0]}"
            )
        if resource_type == "Bundle":
            return fhir.normalise_bundle(data)
        return data

    async def close(self) -> None:
        await self._client.aclose()
