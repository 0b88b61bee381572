"""
LLM Clients — Couche d'abstraction LLM multi-provider.

Pivoter de fournisseur (Groq → Azure OpenAI) se fait UNIQUEMENT ici
+ dans settings.py / .env. L'assistant vocal ne connaît pas le provider.

Providers supportés:
    - "groq"   : Groq Cloud (Llama 3.1)
    - "azure"  : Azure OpenAI (GPT-4o, GPT-4o-mini)
"""

import logging
from typing import Dict, List, Optional

from agrilo.core.errors import ApiError
from agrilo.core.settings import settings

logger = logging.getLogger(__name__)


def get_sdk_client(provider: Optional[str] = None):
    """Retourne le SDK client brut du provider configuré (interface chat.completions commune)."""
    provider = provider or settings.LLM_PROVIDER

    if provider == "azure":
        from openai import AzureOpenAI
        return AzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
        )

    if provider != "groq":
        raise ValueError(f"Unknown LLM provider: {provider}")

    from groq import Groq
    return Groq(api_key=settings.llm_api_key)


def model_name(provider: Optional[str] = None) -> str:
    provider = provider or settings.LLM_PROVIDER
    return settings.AZURE_OPENAI_DEPLOYMENT_NAME if provider == "azure" else settings.LLM_MODEL


def chat_completion(
    messages: List[Dict[str, str]],
    client=None,
    temperature: Optional[float] = None,
    max_tokens: int = 300,
) -> str:
    """Un appel chat ; lève ApiError 502 si le provider échoue ou répond vide."""
    client = client or get_sdk_client()
    try:
        response = client.chat.completions.create(
            model=model_name(),
            messages=messages,
            temperature=temperature if temperature is not None else settings.LLM_TEMPERATURE,
            max_tokens=max_tokens,
        )
    except Exception as e:
        logger.error("LLM call failed (%s): %s", settings.LLM_PROVIDER, e)
        raise ApiError("Language model unavailable", 502)

    content = (response.choices[0].message.content or "").strip() if response.choices else ""
    if not content:
        raise ApiError("Language model returned an empty answer", 502)
    return content


__all__ = ["get_sdk_client", "model_name", "chat_completion"]
