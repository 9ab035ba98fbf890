"""
Question-routing demo workflow.

    START → classify ─┬─(rag)────▶ retrieve ─▶ answer ─┬─▶ evaluate ─▶ END
                      └─(direct)─────────────▶ answer  └─▶ log_trace

``answer`` fans out to ``evaluate`` and ``log_trace``, which run in the same
superstep. Model calls are replaced by deterministic stand-ins so the demo
runs offline; the node bodies are opaque to the engine either way.

State keys:
    question (in)            the user's question
    route                    "rag" or "direct", written by classify
    retrieved_chunks         list[str], written by retrieve
    draft_answer             str, written by answer
    evaluation               {"ok": bool, "reason": str}, written by evaluate
    audit                    {"keys": [...]}, written by log_trace
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from wavegraph.graph import END, START, Graph, NodeContext

logger = logging.getLogger(__name__)

RAG_PATTERN = re.compile(
    r"policy|price|latest|define|reference|citation|docs|metadata|rag|embedding|chunk",
    re.IGNORECASE,
)

DEFAULT_CORPUS = [
    "Chunking splits long documents into smaller pieces so each fits an embedding model.",
    "Metadata attached to chunks helps filtering, debugging and traceability in RAG.",
    "Embeddings map text to vectors so that similar meanings land close together.",
    "A vector database indexes embeddings for fast nearest-neighbour search.",
]


def load_corpus(store_path: Path | None) -> list[str]:
    """Load ``{"records": [{"text": ...}, ...]}`` from disk, or the built-in corpus."""
    if store_path is None:
        return list(DEFAULT_CORPUS)
    data = json.loads(Path(store_path).read_text(encoding="utf-8"))
    return [str(r.get("text", "")) for r in data.get("records", [])]


def classify(ctx: NodeContext) -> dict[str, Any]:
    needs_rag = bool(RAG_PATTERN.search(ctx.state["question"]))
    return {"route": "rag" if needs_rag else "direct"}


def route_after_classify(state: dict[str, Any]) -> str:
    return "retrieve" if state.get("route") == "rag" else "answer"


def make_retrieve(corpus: list[str], limit: int = 3):
    def retrieve(ctx: NodeContext) -> dict[str, Any]:
        words = {w for w in re.findall(r"[a-z]+", ctx.state["question"].lower()) if len(w) > 3}
        hits = [
            " ".join(text.split())[:220]
            for text in corpus
            if any(w in text.lower() for w in words)
        ][:limit]
        return {"retrieved_chunks": hits or ["(No relevant chunks found.)"]}

    return retrieve


async def answer(ctx: NodeContext) -> dict[str, Any]:
    chunks = ctx.state.get("retrieved_chunks") or []
    if chunks:
        body = " ".join(chunks)
        return {"draft_answer": f"Based on the context: {body}"}
    return {"draft_answer": f"Here is a short answer to: {ctx.state['question']}"}


async def evaluate(ctx: NodeContext) -> dict[str, Any]:
    draft = ctx.state.get("draft_answer", "")
    words = {w for w in re.findall(r"[a-z]+", ctx.state["question"].lower()) if len(w) > 3}
    covered = sorted(w for w in words if w in draft.lower())
    ok = bool(covered)
    reason = f"covers {covered}" if ok else "answer does not mention the question's key terms"
    return {"evaluation": {"ok": ok, "reason": reason}}


def log_trace(ctx: NodeContext) -> dict[str, Any]:
    keys = sorted(ctx.state)
    logger.info(f"State keys at step {ctx.step}: {keys}", extra={"node_name": ctx.node_name})
    return {"audit": {"keys": keys}}


def build_question_router_graph(store_path: Path | None = None) -> Graph:
    """Build the demo graph. ``answer`` and ``evaluate`` get one retry each."""
    corpus = load_corpus(store_path)
    return (
        Graph("question-router", description="Classify, optionally retrieve, answer, evaluate")
        .add_node("classify", classify, input_keys=["question"], output_keys=["route"])
        .add_node(
            "retrieve",
            make_retrieve(corpus),
            input_keys=["question"],
            output_keys=["retrieved_chunks"],
        )
        .add_node(
            "answer",
            answer,
            max_retries=1,
            timeout=25.0,
            input_keys=["question", "retrieved_chunks"],
            output_keys=["draft_answer"],
        )
        .add_node(
            "evaluate",
            evaluate,
            max_retries=1,
            timeout=25.0,
            input_keys=["question", "draft_answer"],
            output_keys=["evaluation"],
        )
        .add_node("log_trace", log_trace, output_keys=["audit"])
        .add_edge(START, "classify")
        .add_conditional_edge("classify", route_after_classify, targets=["retrieve", "answer"])
        .add_edge("retrieve", "answer")
        .add_edge("answer", "evaluate")
        .add_edge("answer", "log_trace")
        .add_edge("evaluate", END)
    )
