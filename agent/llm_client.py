import asyncio
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from openai.types.chat import ChatCompletion

from agent.config import config
from agent.cost_calculator import calculate_cost
from agent.exceptions import LLMProviderError
from agent.logging_utils import api_call_logger, classify_error, token_usage_logger

logger = logging.getLogger(__name__)

_WAIT_PATTERN = re.compile(r"wait (\d+) seconds")


def create_openai_client(timeout: Optional[float] = None) -> AsyncOpenAI:
    """AsyncOpenAI apuntando al proveedor configurado (GitHub Models, OpenAI u Ollama)."""
    client_kwargs: dict[str, Any] = {
        "api_key": config.OPENAI_API_KEY,
        "timeout": timeout or config.REQUEST_TIMEOUT_SECONDS,
        "max_retries": 0,  # sin retry automático: el error llega al caller
    }
    if config.OPENAI_BASE_URL:
        client_kwargs["base_url"] = config.OPENAI_BASE_URL
    return AsyncOpenAI(**client_kwargs)


@dataclass
class LLMResponse:
    """Respuesta normalizada de chat completions."""
    content: Optional[str]
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Dict[str, Any]:
        """Mensaje assistant tal como se re-envía en la siguiente ronda."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = self.tool_calls
        return message


class ChatCompletionsClient:
    """
    Cliente de chat completions. Una llamada = un request, sin retry:
    cualquier respuesta no exitosa se convierte en LLMProviderError con el
    mensaje upstream (los rate limits se reformatean para mostrarse al usuario).
    Cada llamada queda registrada en api_calls_log / token_usage_log.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client or create_openai_client()
        self.model = model or config.DEFAULT_MODEL
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        """Lazy init del semáforo para evitar problemas con event loops."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(config.MAX_CONCURRENT_GENERATIONS)
        return self._semaphore

    async def create(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> LLMResponse:
        use_model = model or self.model
        kwargs: dict[str, Any] = {
            "model": use_model,
            "messages": messages,
            "temperature": config.CHAT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or config.CHAT_MAX_TOKENS,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice or "auto"

        call_id = uuid.uuid4().hex
        started = time.time()
        async with self.semaphore:
            try:
                response: ChatCompletion = await self._client.chat.completions.create(**kwargs)
            except APIStatusError as e:
                error = LLMProviderError(
                    format_rate_limit_message(_upstream_message(e), use_model),
                    status_code=e.status_code,
                )
                self._log_call(call_id, use_model, started, error)
                logger.error("Chat completion failed (status=%s): %s", e.status_code, error.message)
                raise error from e
            except APITimeoutError as e:
                error = LLMProviderError(f"The model {use_model} did not respond in time.", status_code=408)
                self._log_call(call_id, use_model, started, error)
                raise error from e
            except APIConnectionError as e:
                error = LLMProviderError(f"Could not reach the chat completions endpoint: {e}")
                self._log_call(call_id, use_model, started, error)
                raise error from e

        choice = response.choices[0]
        result = LLMResponse(
            content=choice.message.content,
            model=response.model or use_model,
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
            tool_calls=[tc.model_dump(exclude_none=True) for tc in (choice.message.tool_calls or [])],
        )
        self._log_call(call_id, use_model, started)
        self._log_usage(call_id, use_model, result, conversation_id)
        return result

    async def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Completion de un solo mensaje user."""
        return await self.create(
            [{"role": "user", "content": prompt}],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def close(self):
        await self._client.close()

    # =========================================================================
    # MÉTRICAS
    # =========================================================================

    def _log_call(
        self, call_id: str, model: str, started: float, error: Optional[LLMProviderError] = None
    ) -> None:
        api_call_logger.log_row({
            "call_id": call_id,
            "timestamp": started,
            "api_name": "chat_completions",
            "endpoint": config.OPENAI_BASE_URL or "https://api.openai.com/v1",
            "model": model,
            "status_code": error.status_code if error else 200,
            "success": error is None,
            "response_time_ms": int((time.time() - started) * 1000),
            "error_type": classify_error(error.status_code) if error else "",
            "error_message": error.message if error else "",
            "from_cache": False,
        })

    def _log_usage(
        self, call_id: str, model: str, result: LLMResponse, conversation_id: Optional[str]
    ) -> None:
        token_usage_logger.log_row({
            "call_id": call_id,
            "timestamp": time.time(),
            "model": model,
            "conversation_id": conversation_id or "",
            "prompt_tokens": result.prompt_tokens,
            "completion_tokens": result.completion_tokens,
            "total_tokens": result.total_tokens,
            "estimated_cost_usd": calculate_cost(result.prompt_tokens, result.completion_tokens, model),
        })


# =============================================================================
# HELPERS
# =============================================================================

def _upstream_message(error: APIStatusError) -> str:
    body = error.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
        if isinstance(inner, str) and inner:
            return inner
    return error.message or f"HTTP {error.status_code}"


def format_rate_limit_message(message: str, model: str) -> str:
    """
    "... Please wait 5400 seconds before retrying." →
    "Rate limit exceeded for gpt-4o. ... Wait 1 hour and 30 minutes ..."
    Cualquier otro mensaje se devuelve sin cambios.
    """
    match = _WAIT_PATTERN.search(message)
    if not match:
        return message

    wait_seconds = int(match.group(1))
    hours = wait_seconds // 3600
    minutes = (wait_seconds % 3600) // 60
    minutes_text = f"{minutes} minute{'s' if minutes != 1 else ''}"
    if hours > 0:
        wait_time = f"{hours} hour{'s' if hours > 1 else ''} and {minutes_text}"
    else:
        wait_time = minutes_text

    return (
        f"Rate limit exceeded for {model}. "
        "You've reached the limit of requests for this model. "
        f"Wait {wait_time} to use this model again."
    )


def parse_json_object(content: Optional[str]) -> Optional[dict]:
    """
    Parsea un objeto JSON de la respuesta del LLM de forma tolerante.

    Los modelos a veces envuelven el JSON en markdown o agregan prosa
    antes/después. Retorna None si no hay ningún objeto parseable.
    """
    if not content:
        return None

    # Intento 1: JSON directo
    try:
        parsed = json.loads(content)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Intento 2: bloque markdown ```json ... ```
    match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", content, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass

    # Intento 3: desde el primer { hasta el último }
    match = re.search(r"\{[\s\S]*\}", content)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    logger.warning("No se pudo parsear JSON de la respuesta: %s", content[:200])
    return None
