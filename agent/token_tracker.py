"""
Acumulador de tokens y costo por operación.

Una operación = un turno de chat, una ingesta o un resumen de memoria.
Cada llamada al LLM / embeddings dentro de ella registra un paso.
"""
import logging
import math
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

import tiktoken

from agent.cost_calculator import calculate_cost, format_cost

logger = logging.getLogger(__name__)

OP_CHAT_TURN = "chat_turn"
OP_INGESTION = "ingestion"
OP_SUMMARY = "memory_summary"


@dataclass
class OperationMetrics:
    operation_type: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    details: List[Dict] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out

    def tokens_by_model(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for step in self.details:
            totals[step["model"]] = totals.get(step["model"], 0) + step["tokens_in"] + step["tokens_out"]
        return totals

    def summary(self) -> str:
        return (
            f"{self.operation_type}: {len(self.details)} call(s), "
            f"{self.tokens_in} in / {self.tokens_out} out, {format_cost(self.cost_usd)}"
        )


class TokenTracker:
    """
    Singleton. Los métodos públicos toman un threading.Lock: se llaman desde
    tareas asyncio concurrentes (varios turnos en paralelo) y desde hilos
    auxiliares (input() del CLI corre en un thread).
    """

    _instance: Optional["TokenTracker"] = None
    _class_lock = threading.Lock()

    __slots__ = ("_operations", "_encoding", "_lock")

    def __new__(cls) -> "TokenTracker":
        with cls._class_lock:
            if cls._instance is None:
                inst = super().__new__(cls)
                inst._operations: Dict[str, OperationMetrics] = {}
                inst._lock = threading.Lock()
                try:
                    inst._encoding = tiktoken.get_encoding("cl100k_base")
                except Exception as exc:
                    logger.warning("tiktoken encoding unavailable, using chars/4: %s", exc)
                    inst._encoding = None
                cls._instance = inst
        return cls._instance

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def start_operation(self, operation_id: str, operation_type: str) -> None:
        with self._lock:
            if operation_id in self._operations:
                logger.warning("start_operation: '%s' already open, restarting it", operation_id)
            self._operations[operation_id] = OperationMetrics(operation_type=operation_type)

    def record_usage(
        self,
        operation_id: str,
        tokens_in: int,
        tokens_out: int,
        model: str,
        detail_name: str = "step",
    ) -> None:
        """Suma tokens y costo de un paso. Un operation_id desconocido se ignora con warning."""
        with self._lock:
            metrics = self._operations.get(operation_id)
            if metrics is None:
                logger.warning("record_usage: unknown operation_id '%s'", operation_id)
                return

            cost = calculate_cost(tokens_in, tokens_out, model)
            metrics.tokens_in += tokens_in
            metrics.tokens_out += tokens_out
            metrics.cost_usd += cost
            metrics.details.append({
                "step": detail_name,
                "model": model,
                "tokens_in": tokens_in,
                "tokens_out": tokens_out,
                "cost": cost,
            })

    def end_operation(self, operation_id: str) -> Optional[OperationMetrics]:
        """Cierra la operación y retorna lo acumulado."""
        with self._lock:
            return self._operations.pop(operation_id, None)

    def get_current_metrics(self, operation_id: str) -> Optional[OperationMetrics]:
        with self._lock:
            return self._operations.get(operation_id)

    @contextmanager
    def operation(self, operation_type: str, operation_id: Optional[str] = None) -> Iterator[str]:
        """
        with tracker.operation(OP_SUMMARY) as op_id:
            tracker.record_usage(op_id, ...)

        Cierra la operación al salir (también con excepción) y loguea el resumen.
        """
        op_id = operation_id or f"{operation_type}_{uuid.uuid4().hex}"
        self.start_operation(op_id, operation_type)
        try:
            yield op_id
        finally:
            metrics = self.end_operation(op_id)
            if metrics is not None and metrics.details:
                logger.info(metrics.summary())

    # ------------------------------------------------------------------
    # Estimación
    # ------------------------------------------------------------------

    def estimate_tokens(self, text: Optional[str]) -> int:
        """Conteo con tiktoken cl100k_base; sin encoding, ceil(chars / 4)."""
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text))
        return self.estimate_tokens_fast(text)

    @staticmethod
    def estimate_tokens_fast(text: Optional[str]) -> int:
        """ceil(chars / 4). Es el token_count que se guarda por chunk."""
        if not text:
            return 0
        return math.ceil(len(text) / 4)


tracker = TokenTracker()
