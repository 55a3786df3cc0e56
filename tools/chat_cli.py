"""
Chat interactivo contra el asistente de la boda.
Run: python -m tools.chat_cli --user <user_id> [--model gpt-4o] [--init-db]

Comandos:
  /new   guarda en memoria la conversación actual (si corresponde) y abre otra
  /save  guarda la conversación actual en memoria
  /stats tokens, costo y búsquedas web de las últimas 24 h
  /quit  sale
"""
import argparse
import asyncio
import logging
from typing import Optional

from agent.config import config
from agent.cost_calculator import format_cost
from agent.db_utils import DatabasePool
from agent.exceptions import AssistantError
from agent.logging_utils import get_token_stats, get_web_search_stats
from services.container import build_container


PROMPT = "you> "


async def repl(user_id: str, model: Optional[str] = None, init_db: bool = False) -> None:
    if init_db:
        await DatabasePool.init_db()

    services = build_container(model=model)
    chat = services.chat
    conversation_id: Optional[str] = None

    print(f"Wedding assistant ({services.loop.agent_config.default_model}). /new, /save, /stats, /quit")
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, PROMPT)).strip()
            except EOFError:
                break
            if not line:
                continue

            if line == "/quit":
                break

            if line == "/new":
                if conversation_id:
                    await chat.switch_conversation(user_id, conversation_id)
                conversation_id = None
                print("-- new conversation --")
                continue

            if line == "/stats":
                tokens = get_token_stats()
                searches = get_web_search_stats()
                print(
                    f"-- last 24h: {tokens['total_requests']} LLM calls, {tokens['total_tokens']} tokens, "
                    f"{format_cost(tokens['estimated_cost_usd'])}"
                )
                print(
                    f"   web search: {searches['total_calls']} calls ({searches['failed_calls']} failed), "
                    f"cache hit rate {searches['cache_hit_rate']:.0%}"
                )
                continue

            if line == "/save":
                result = await chat.save_to_memory(user_id, conversation_id)
                print(f"-- {result.message}")
                if result.success:
                    print(f"   importance {result.importance}/10, topics: {', '.join(result.topics) or '-'}")
                    print(f"   {result.summary}")
                continue

            try:
                reply = await chat.send_message(user_id, line, conversation_id, model=model)
            except AssistantError as e:
                print(f"!! {e}")
                continue

            conversation_id = reply.conversation_id
            if reply.tool_calls:
                print(f"   (tools: {', '.join(c['name'] for c in reply.tool_calls)})")
            print(f"assistant> {reply.content}\n")
    finally:
        await services.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the wedding assistant")
    parser.add_argument("--user", type=str, required=True, help="User id that owns the conversations")
    parser.add_argument("--model", type=str, default=None, choices=config.AVAILABLE_MODELS)
    parser.add_argument("--init-db", action="store_true", help="Apply sql/schema.sql before starting")
    args = parser.parse_args()

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(repl(args.user, model=args.model, init_db=args.init_db))


if __name__ == "__main__":
    main()
