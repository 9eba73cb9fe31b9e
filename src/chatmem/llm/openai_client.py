from typing import Dict, List
from openai import OpenAI
from chatmem.config import settings
from chatmem.logging import logger

# The completion service speaks the OpenAI chat API (Ollama exposes it under /v1).
# Local servers ignore the key, but the SDK refuses to start without one.
api_key = settings.COMPLETION_API_KEY.get_secret_value() if settings.COMPLETION_API_KEY else "ollama"
client = OpenAI(
    api_key=api_key,
    base_url=settings.COMPLETION_BASE_URL,
    timeout=settings.COMPLETION_TIMEOUT_SECONDS,
    max_retries=settings.COMPLETION_MAX_RETRIES,
)

def get_chat_completion(
    model: str,
    messages: List[Dict[str, str]],
    temperature: float | None = None,
    top_p: float | None = None,
) -> str:
    """
    Call the completion service once, non-streaming.
    Returns the content string ("" when the model sent none).
    """
    try:
        kwargs = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if top_p is not None:
            kwargs["top_p"] = top_p

        response = client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"Chat completion call failed (model={model}): {e}")
        raise
