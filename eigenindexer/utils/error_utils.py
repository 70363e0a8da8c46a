"""Common error types, error classification and validation utility functions
"""

import asyncio
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterator, List, Optional

from web3.exceptions import BlockNotFound, TimeExhausted, TransactionNotFound


class IndexerError(Exception):
    """Base class for errors raised by the indexer."""


class ConfigurationError(IndexerError):
    """Invalid or incomplete configuration that no retry can fix."""


class EventDecodeError(IndexerError):
    """A log could not be decoded into the event record of its stream."""


class RpcError(IndexerError):
    """The node returned a response that is missing data we depend on."""


def check_for_missing_env_vars(env_vars: dict):
    """Checks whether any required environment values are undefined.

    :param env_vars: The dictionary of required environment variables.
    """
    # Check for missing environment variables since these are unrecoverable.
    missing_keys = [k for k, v in env_vars.items() if v is None or v == ""]
    if missing_keys:
        missing_keys_str = ", ".join(missing_keys)
        raise EnvironmentError(
            f"Missing required environment variables: {missing_keys_str}"
        )


class ErrorKind(Enum):
    """Classification of a failed RPC call."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    OTHER = "other"

    @property
    def retryable(self) -> bool:
        """True if another attempt of the call may succeed."""
        return self in (ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT)


# JSON-RPC error code used by Infura and others for request throttling.
RATE_LIMIT_RPC_CODE = -32005
RATE_LIMIT_HTTP_STATUS = 429

_RATE_LIMIT_MESSAGES = ("too many requests", "rate limit", "rate-limit", "throttl")
# 429 only counts as an HTTP status, not as digits of a block number or hex value.
_RATE_LIMIT_STATUS_PATTERN = re.compile(
    rf"(?:^|(?:http|status|code|error)[\W_]{{0,3}}){RATE_LIMIT_HTTP_STATUS}(?![0-9a-z])"
)
_NOT_FOUND_MESSAGES = (
    "block not found",
    "block does not exist",
    "header not found",
    "transaction not found",
)


def iter_rpc_error_payloads(error: BaseException) -> Iterator[dict]:
    """
    Yield the JSON-RPC error objects carried by an exception.
    Depending on the web3 version and the provider, the error object may be
    attached as rpc_response, passed as the exception argument,
    or nested in a list for batched requests.

    :param error: The exception raised by the provider.
    :return: An iterator over the error dictionaries.
    """
    rpc_response = getattr(error, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        yield rpc_response["error"]
    for arg in error.args:
        candidates = arg if isinstance(arg, (list, tuple)) else [arg]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            if isinstance(candidate.get("error"), dict):
                yield candidate["error"]
            elif "code" in candidate or "message" in candidate:
                yield candidate


def _error_message(error: BaseException) -> str:
    parts = [str(error)]
    for payload in iter_rpc_error_payloads(error):
        parts.append(str(payload.get("message", "")))
    return " ".join(parts).lower()


class ErrorClassifier(ABC):
    """
    Maps an exception raised by an RPC call to an ErrorKind.
    Provider-specific adapters return None for errors they do not recognize
    so that they can be chained.
    """

    @abstractmethod
    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        """
        Classify an error.

        :param error: The exception raised by the call.
        :return: The error kind or None if the error is not recognized.
        """


class TimeoutErrorClassifier(ErrorClassifier):
    """Timeouts of a single call are transient."""

    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        if isinstance(error, (asyncio.TimeoutError, TimeoutError, TimeExhausted)):
            return ErrorKind.TIMEOUT
        return None


class NotFoundErrorClassifier(ErrorClassifier):
    """Missing blocks and transactions cannot appear by retrying."""

    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        if isinstance(error, (BlockNotFound, TransactionNotFound)):
            return ErrorKind.NOT_FOUND
        message = _error_message(error)
        if any(m in message for m in _NOT_FOUND_MESSAGES):
            return ErrorKind.NOT_FOUND
        return None


class HttpStatusErrorClassifier(ErrorClassifier):
    """HTTP 429 responses from aiohttp or requests based transports."""

    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        status = getattr(error, "status", None)
        if status is None:
            status = getattr(getattr(error, "response", None), "status_code", None)
        if status == RATE_LIMIT_HTTP_STATUS:
            return ErrorKind.RATE_LIMIT
        return None


class JsonRpcErrorClassifier(ErrorClassifier):
    """JSON-RPC error objects, including those nested in batch responses."""

    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        for payload in iter_rpc_error_payloads(error):
            if payload.get("code") == RATE_LIMIT_RPC_CODE:
                return ErrorKind.RATE_LIMIT
            message = str(payload.get("message", "")).lower()
            if any(m in message for m in _RATE_LIMIT_MESSAGES):
                return ErrorKind.RATE_LIMIT
        return None


class MessageErrorClassifier(ErrorClassifier):
    """
    Last resort matching on the error text.
    Some providers only signal throttling in the message of a generic error.
    """

    def classify(self, error: BaseException) -> Optional[ErrorKind]:
        message = _error_message(error)
        if any(m in message for m in _RATE_LIMIT_MESSAGES):
            return ErrorKind.RATE_LIMIT
        if _RATE_LIMIT_STATUS_PATTERN.search(message):
            return ErrorKind.RATE_LIMIT
        return None


class CompositeErrorClassifier(ErrorClassifier):
    """
    Chains classifiers. The first classifier that recognizes an error wins.
    Unrecognized errors are classified as ErrorKind.OTHER.
    """

    def __init__(self, classifiers: List[ErrorClassifier]):
        self.classifiers = classifiers

    def classify(self, error: BaseException) -> ErrorKind:
        for classifier in self.classifiers:
            kind = classifier.classify(error)
            if kind is not None:
                return kind
        return ErrorKind.OTHER


def default_error_classifier() -> CompositeErrorClassifier:
    """
    Create the classifier chain used for Ethereum JSON-RPC providers.

    :return: The composite classifier.
    """
    return CompositeErrorClassifier(
        [
            TimeoutErrorClassifier(),
            NotFoundErrorClassifier(),
            HttpStatusErrorClassifier(),
            JsonRpcErrorClassifier(),
            MessageErrorClassifier(),
        ]
    )
