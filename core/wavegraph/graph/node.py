"""
Node Protocol - The named units of work a graph runs.

A node is an operation plus its reliability policy. Operations receive a
``NodeContext`` holding a read-only snapshot of the state as it stood at the
start of the superstep, and return a partial update that the scheduler
merges after every sibling in the frontier has finished.

Operations may be plain functions or coroutine functions:

    def classify(ctx: NodeContext) -> dict:
        return {"route": "rag" if "chunk" in ctx.state["question"] else "direct"}

    async def answer(ctx: NodeContext) -> dict:
        reply = await llm.complete(ctx.state["question"])
        return {"draft_answer": reply}

Plain functions run in a worker thread so a slow one does not stall its
siblings and can still be timed out. A timed-out thread is not interrupted;
it should poll ``ctx.cancelled`` if it wants to stop early.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from wavegraph.graph.edge import SENTINELS

NodeOutput = Mapping[str, Any] | None
Operation = Callable[["NodeContext"], NodeOutput | Awaitable[NodeOutput]]


@dataclass
class NodeContext:
    """Everything an operation may look at during one attempt."""

    node_name: str
    state: Mapping[str, Any]
    attempt: int = 1
    step: int = 0
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        """True once the attempt has timed out or the run was aborted."""
        return self.cancel_event.is_set()


class NodeSpec(BaseModel):
    """
    Specification for a node.

    ``input_keys`` and ``output_keys`` document which state fields the node
    reads and writes. They are not enforced globally: missing outputs are
    logged, and overlapping outputs between fan-out siblings are reported
    by ``Graph.validate()``.
    """

    name: str = Field(description="Unique node name")
    operation: Callable[..., Any] = Field(description="Callable taking a NodeContext")
    max_retries: int = Field(default=0, ge=0, description="Additional attempts after a failure")
    timeout: float | None = Field(
        default=None, gt=0, description="Per-attempt timeout in seconds"
    )
    description: str = ""
    input_keys: list[str] = Field(default_factory=list)
    output_keys: list[str] = Field(default_factory=list)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("node name must be a non-empty string")
        if value in SENTINELS:
            raise ValueError(f"'{value}' is a reserved sentinel name")
        return value

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1
