"""
Métricas en CSV (una fila por llamada / por documento) bajo METRICS_LOG_DIR.
Escribir métricas nunca rompe al caller: un OSError se loguea y sigue.
"""
import csv
import logging
import os
import time
from threading import Lock
from typing import Dict, List, Optional

from agent.config import config

logger = logging.getLogger(__name__)


class CsvLogger:
    def __init__(self, file_path: str, headers: List[str]):
        self.file_path = file_path
        self.headers = headers
        self._lock = Lock()

    def _ensure_header(self) -> None:
        if os.path.exists(self.file_path):
            return
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.file_path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(self.headers)

    def log_row(self, row: Dict) -> None:
        """Columnas que no están en headers se descartan; las faltantes quedan vacías."""
        values = {k: row.get(k, "") for k in self.headers}
        with self._lock:
            try:
                self._ensure_header()
                with open(self.file_path, "a", newline="", encoding="utf-8") as f:
                    csv.DictWriter(f, fieldnames=self.headers).writerow(values)
            except OSError as e:
                logger.error("Could not append metrics row to %s: %s", self.file_path, e)

    def read_rows(self) -> List[Dict[str, str]]:
        with self._lock:
            if not os.path.exists(self.file_path):
                return []
            with open(self.file_path, newline="", encoding="utf-8") as f:
                return list(csv.DictReader(f))


def classify_error(status_code: Optional[int]) -> str:
    """Etiqueta error_type de api_calls_log según el status HTTP (None = sin respuesta)."""
    if status_code is None:
        return "network"
    if status_code == 429:
        return "rate_limit"
    if status_code in (401, 403):
        return "auth"
    if status_code in (408, 504):
        return "timeout"
    if status_code >= 500:
        return "server_error"
    if status_code >= 400:
        return "client_error"
    return "unknown"


def _metrics_path(filename: str) -> str:
    return os.path.join(config.METRICS_LOG_DIR, filename)


# chat completions, embeddings y tavily
api_call_logger = CsvLogger(_metrics_path("api_calls_log.csv"), [
    "call_id", "timestamp", "api_name", "endpoint", "model", "status_code",
    "success", "response_time_ms", "error_type", "error_message", "from_cache",
])

# uso de tokens por llamada al LLM
token_usage_logger = CsvLogger(_metrics_path("token_usage_log.csv"), [
    "call_id", "timestamp", "model", "conversation_id", "prompt_tokens",
    "completion_tokens", "total_tokens", "estimated_cost_usd",
])

ingestion_logger = CsvLogger(_metrics_path("ingestion_log.csv"), [
    "document_id", "timestamp", "filename", "file_type", "file_size",
    "status", "chunks_created", "embeddings_tokens", "cost_usd", "elapsed_sec",
    "error_message",
])


# =============================================================================
# AGREGADOS (ventana de las últimas N horas)
# =============================================================================

WEB_SEARCH_API = "tavily"


def _number(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _rows_since(csv_logger: CsvLogger, hours: float, now: Optional[float]) -> List[Dict[str, str]]:
    cutoff = (time.time() if now is None else now) - hours * 3600
    return [r for r in csv_logger.read_rows() if _number(r.get("timestamp")) >= cutoff]


def get_web_search_stats(hours: float = 24, now: Optional[float] = None) -> Dict[str, float]:
    """
    Llamadas a la búsqueda web en la ventana: total, exitosas, fallidas,
    latencia promedio (ms) y proporción servida desde la cache.
    """
    rows = [r for r in _rows_since(api_call_logger, hours, now) if r.get("api_name") == WEB_SEARCH_API]
    if not rows:
        return {
            "total_calls": 0,
            "successful_calls": 0,
            "failed_calls": 0,
            "avg_response_time_ms": 0.0,
            "cache_hit_rate": 0.0,
        }

    successful = sum(1 for r in rows if r.get("success") == "True")
    cached = sum(1 for r in rows if r.get("from_cache") == "True")
    latency = sum(_number(r.get("response_time_ms")) for r in rows) / len(rows)
    return {
        "total_calls": len(rows),
        "successful_calls": successful,
        "failed_calls": len(rows) - successful,
        "avg_response_time_ms": round(latency, 1),
        "cache_hit_rate": round(cached / len(rows), 3),
    }


def get_token_stats(hours: float = 24, now: Optional[float] = None) -> Dict[str, float]:
    """Tokens y costo estimado de las llamadas al LLM en la ventana."""
    rows = _rows_since(token_usage_logger, hours, now)
    prompt = sum(int(_number(r.get("prompt_tokens"))) for r in rows)
    completion = sum(int(_number(r.get("completion_tokens"))) for r in rows)
    return {
        "total_tokens": prompt + completion,
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_requests": len(rows),
        "estimated_cost_usd": round(sum(_number(r.get("estimated_cost_usd")) for r in rows), 6),
    }
