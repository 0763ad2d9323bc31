"""Shared consumer/processor/producer scaffolding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, Protocol, TypeVar


PayloadT = TypeVar("PayloadT")
ResultT = TypeVar("ResultT")
RequestT = TypeVar("RequestT")

LOG = logging.getLogger(__name__)


@dataclass
class ResultEnvelope(Generic[ResultT]):
    status: str
    payload: Optional[ResultT] = None
    diagnostics: Optional[dict[str, Any]] = None

    def ok(self) -> bool:
        return self.status.lower() == "success"

    def unwrap(self) -> ResultT:
        """Return payload or raise ValueError. Use after ok() check."""
        if self.payload is None:
            msg = (self.diagnostics or {}).get("message", "No payload")
            raise ValueError(msg)
        return self.payload

    @classmethod
    def success(cls, payload: ResultT) -> "ResultEnvelope[ResultT]":
        return cls(status="success", payload=payload)

    @classmethod
    def error(cls, message: str, code: int = 2) -> "ResultEnvelope[ResultT]":
        return cls(status="error", diagnostics={"message": message, "code": code})


class Consumer(Protocol[PayloadT]):
    def consume(self) -> PayloadT:
        ...


class Processor(Protocol[PayloadT, ResultT]):
    def process(self, payload: PayloadT) -> ResultT:
        ...


class RequestConsumer(Generic[RequestT], Consumer[RequestT]):
    """Generic consumer that wraps any request object.

    Example usage:
        consumer = RequestConsumer(DedupRequest(service=service, apply=False))
        payload = consumer.consume()  # Returns the request
    """

    def __init__(self, request: RequestT) -> None:
        self._request = request

    def consume(self) -> RequestT:  # pragma: no cover - trivial
        return self._request


class BaseProducer:
    """Base class for pipeline producers with common error handling.

    Subclasses override _produce_success(); failed envelopes print their
    diagnostics message and stop there.
    """

    def produce(self, result: ResultEnvelope) -> None:
        """Template method: handle errors, delegate success to subclass."""
        if not result.ok():
            msg = (result.diagnostics or {}).get("message")
            if msg:
                print(msg)
            return
        if result.payload is not None:
            self._produce_success(result.payload, result.diagnostics)

    def _produce_success(self, payload: Any, diagnostics: Optional[Dict[str, Any]]) -> None:
        """Override in subclass to handle successful result output."""
        raise NotImplementedError("Subclass must implement _produce_success")


def run_pipeline(request: Any, processor: Any, producer: Any) -> int:
    """Execute a pipeline and return CLI exit code.

    Args:
        request: The request object to process
        processor: Processor instance
        producer: Producer instance

    Returns:
        0 on success, or error code from diagnostics (default 2)
    """
    envelope = processor.process(RequestConsumer(request).consume())
    producer.produce(envelope)
    if envelope.ok():
        return 0
    code = int((envelope.diagnostics or {}).get("code", 2))
    LOG.debug("pipeline %s failed with code %d", type(processor).__name__, code)
    return code
