"""
Request dispatcher for the Vault service.

Drives one request through identity extraction, admission control and the
vault operation, and shapes the response. Every response, success or
failure, carries the caller's current rate-limit headers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from shared.errors import (
    AuthenticationError,
    RateLimitError,
    ValidationError,
    VaultServiceException,
)
from shared.logging import get_logger, set_caller_context, clear_caller_context
from shared.metrics import MetricsCollector

from ..auth import extract_caller_identity, DEFAULT_SCHEMES
from ..ratelimit import FixedWindowRateLimiter, RateLimitDecision
from ..vault import VaultItemList, VaultItemView, VaultItemWrite, VaultStore

HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RETRY_AFTER = "x-ratelimit-retry-after"
HEADER_LIMIT = "x-ratelimit-limit"


class RequestState(str, Enum):
    """Lifecycle of one dispatched request."""
    RECEIVED = "received"
    IDENTITY_EXTRACTED = "identity_extracted"
    RATE_CHECKED = "rate_checked"
    REJECTED = "rejected"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"


class VaultOperation(str, Enum):
    """Vault operations reachable over HTTP."""
    CREATE = "create"
    LIST = "list"
    UPDATE = "update"


SUCCESS_STATUS = {
    VaultOperation.CREATE: 201,
    VaultOperation.LIST: 200,
    VaultOperation.UPDATE: 200,
}


@dataclass
class DispatchResult:
    """Fully shaped response for the transport layer."""
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str]
    trail: List[RequestState] = field(default_factory=list)

    @property
    def state(self) -> RequestState:
        return self.trail[-1]


class RequestDispatcher:
    """Orchestrates extractor, rate limiter and vault store per request."""

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter,
        store: VaultStore,
        metrics: Optional[MetricsCollector] = None,
        auth_schemes: Iterable[str] = DEFAULT_SCHEMES,
    ):
        self.rate_limiter = rate_limiter
        self.store = store
        self.metrics = metrics
        self.auth_schemes = tuple(auth_schemes)
        self.logger = get_logger("vault.dispatcher")

    def dispatch(
        self,
        operation: VaultOperation,
        authorization: Optional[str],
        body: bytes = b"",
        item_id: Optional[str] = None,
    ) -> DispatchResult:
        """Run one request to completion and return its response."""
        trail = [RequestState.RECEIVED]

        identity = extract_caller_identity(authorization, self.auth_schemes)
        if identity is None:
            # Nothing consumed: report a full, unconstrained quota
            self.logger.warning("Request rejected: missing caller credential", operation=operation.value)
            self._record_error("UNAUTHORIZED")
            error = AuthenticationError("Missing or blank credential")
            headers = self._full_quota_headers()
            return self._respond(trail, error.status_code, error.to_response().model_dump(), headers)

        trail.append(RequestState.IDENTITY_EXTRACTED)
        set_caller_context(identity)
        try:
            return self._admit(trail, operation, identity, body, item_id)
        finally:
            clear_caller_context()

    def quota_headers(self, authorization: Optional[str]) -> Dict[str, str]:
        """Rate-limit headers for the caller without consuming quota."""
        identity = extract_caller_identity(authorization, self.auth_schemes)
        if identity is None:
            return self._full_quota_headers()

        status = self.rate_limiter.get_status(identity)
        exhausted = status["remaining"] <= 0
        decision = RateLimitDecision(
            allowed=not exhausted,
            remaining=status["remaining"],
            retry_after=status["reset_in_seconds"] if exhausted else 0.0,
            limit=status["limit"],
        )
        return self._rate_limit_headers(decision)

    def _admit(self, trail: List[RequestState], operation: VaultOperation, identity: str,
               body: bytes, item_id: Optional[str]) -> DispatchResult:
        decision = self.rate_limiter.check_and_consume(identity)
        trail.append(RequestState.RATE_CHECKED)
        headers = self._rate_limit_headers(decision)

        if not decision.allowed:
            trail.append(RequestState.REJECTED)
            self._count("rate_limit_decisions_total", decision="rejected")
            headers["Retry-After"] = str(decision.retry_after_seconds)
            error = RateLimitError(details={
                "limit": decision.limit,
                "retry_after": decision.retry_after_seconds,
            })
            return self._respond(trail, error.status_code, error.to_response().model_dump(), headers)

        self._count("rate_limit_decisions_total", decision="allowed")
        trail.append(RequestState.DISPATCHED)

        try:
            status_code, payload = self._invoke(operation, identity, body, item_id)
            outcome = "ok"
        except VaultServiceException as exc:
            self._record_error(exc.code)
            status_code, payload = exc.status_code, exc.to_response().model_dump()
            outcome = exc.code.lower()

        self._count("vault_operations_total", operation=operation.value, outcome=outcome)
        return self._respond(trail, status_code, payload, headers)

    def _invoke(self, operation: VaultOperation, identity: str, body: bytes,
                item_id: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        """Call the vault store for an admitted request."""
        if operation is VaultOperation.CREATE:
            write = self._parse_write(body)
            item = self.store.create(identity, self._decode(write), write.encoding.value)
            return SUCCESS_STATUS[operation], VaultItemView.from_item(item).model_dump(mode="json")

        if operation is VaultOperation.LIST:
            items = [VaultItemView.from_item(item) for item in self.store.list(identity)]
            listing = VaultItemList(items=items, count=len(items))
            return SUCCESS_STATUS[operation], listing.model_dump(mode="json")

        if operation is VaultOperation.UPDATE:
            if not item_id:
                raise ValidationError("Item id is required")
            write = self._parse_write(body)
            item = self.store.update(identity, item_id, self._decode(write), write.encoding.value)
            return SUCCESS_STATUS[operation], VaultItemView.from_item(item).model_dump(mode="json")

        raise ValidationError(f"Unsupported operation: {operation}")

    def _parse_write(self, body: bytes) -> VaultItemWrite:
        try:
            return VaultItemWrite.model_validate_json(body or b"")
        except PydanticValidationError as exc:
            # Error inputs may echo the secret; keep only location and reason
            errors = [
                {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                for error in exc.errors()
            ]
            raise ValidationError("Invalid vault item body", details={"errors": errors}) from exc

    def _decode(self, write: VaultItemWrite) -> bytes:
        try:
            return write.payload_bytes()
        except ValueError as exc:
            raise ValidationError(str(exc), details={"encoding": write.encoding.value}) from exc

    def _rate_limit_headers(self, decision: RateLimitDecision) -> Dict[str, str]:
        return {
            HEADER_LIMIT: str(decision.limit),
            HEADER_REMAINING: str(decision.remaining),
            HEADER_RETRY_AFTER: str(decision.retry_after_seconds),
        }

    def _full_quota_headers(self) -> Dict[str, str]:
        return {
            HEADER_LIMIT: str(self.rate_limiter.limit),
            HEADER_REMAINING: str(self.rate_limiter.limit),
            HEADER_RETRY_AFTER: "0",
        }

    def _respond(self, trail: List[RequestState], status_code: int, body: Dict[str, Any],
                 headers: Dict[str, str]) -> DispatchResult:
        trail.append(RequestState.RESPONDED)
        return DispatchResult(status_code=status_code, body=body, headers=headers, trail=trail)

    def _count(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def _record_error(self, error_type: str):
        if self.metrics:
            self.metrics.record_error(error_type)
