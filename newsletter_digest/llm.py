"""Chat-completion clients used by the digest classifier."""

import json
from typing import Protocol

import boto3
import requests
from botocore.config import Config as BotoConfig

from .config import LLMConfig

SYSTEM_PROMPT = (
    "You are an expert AI newsletter editor. You answer with a single JSON "
    "object and nothing else."
)


class ChatClient(Protocol):
    """Anything that turns chat messages into the model's text reply."""

    def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str: ...


class ChatCompletionClient:
    """Client for OpenAI-compatible chat completion endpoints (Groq by default)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        session: requests.Session | None = None,
    ):
        if not api_key:
            raise ValueError("API key cannot be empty")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str:
        """Send one completion request and return the message content."""
        payload = {
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        response = self.session.post(
            f"{self.base_url}/chat/completions", json=payload, timeout=timeout
        )
        response.raise_for_status()
        data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ValueError(
                f"Response missing choices[0].message.content, keys: {list(data)}"
            ) from None
        if not content or not content.strip():
            raise ValueError("Empty completion content")
        return content


class BedrockChatClient:
    """Client for Amazon Bedrock models using the messages/inferenceConfig API."""

    def __init__(self, region: str = "us-east-1", bedrock_client=None):
        self.region = region
        self.bedrock_client = bedrock_client or boto3.client(
            "bedrock-runtime",
            region_name=region,
            config=BotoConfig(retries={"max_attempts": 1}),
        )

    def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str:
        """Invoke a Bedrock model and return the first text block."""
        request_body = {
            "system": [{"text": SYSTEM_PROMPT}],
            "messages": [
                {"role": message["role"], "content": [{"text": message["content"]}]}
                for message in messages
            ],
            "inferenceConfig": {
                "maxTokens": max_tokens,
                "temperature": temperature,
            },
        }
        response = self.bedrock_client.invoke_model(
            modelId=model,
            body=json.dumps(request_body),
            contentType="application/json",
            accept="application/json",
        )
        response_body = json.loads(response["body"].read())

        try:
            content = response_body["output"]["message"]["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ValueError(
                f"Response missing output/message, keys: {list(response_body)}"
            ) from None
        if not content or not content.strip():
            raise ValueError("Empty completion content")
        return content


def create_chat_client(config: LLMConfig, api_key: str | None) -> ChatClient | None:
    """Build the client for the configured provider.

    Returns None when the chat-completion provider has no API key, which
    sends every request straight to the fallback digest.
    """
    if config.provider == "bedrock":
        return BedrockChatClient(region=config.region)
    if not api_key:
        return None
    return ChatCompletionClient(api_key, base_url=config.base_url)
