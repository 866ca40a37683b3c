"""Summarization backends: a local Ollama server or an OpenAI-compatible API."""

import json
import threading
import time
from typing import Protocol

import openai
import requests
from openai import OpenAI

from .config import SummarizerConfig
from .logging_config import get_logger


class SummarizationError(Exception):
    """The summarizer backend failed to produce a summary."""


class Summarizer(Protocol):
    def summarize(self, text: str) -> str: ...


class OllamaSummarizer:
    """Streams a generation from an Ollama server and joins the chunks."""

    def __init__(
        self,
        base_url: str,
        prompt: str,
        model: str,
        timeout: float,
        execution_id: str | None = None,
    ):
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        self.base_url = base_url.rstrip("/")
        self.prompt = prompt
        self.model = model
        self.timeout = timeout
        self.session = requests.Session()
        # One generation at a time against the local model.
        self._lock = threading.Lock()
        self.logger = get_logger("summarizer", execution_id)

    def summarize(self, text: str) -> str:
        """Generate a summary of ``text``.

        Raises:
            SummarizationError: On transport errors, an error chunk from the
                server, or when generation outlives the timeout
        """
        with self._lock:
            self.logger.info(
                "Running Ollama summarizer", model=self.model, content_length=len(text)
            )
            deadline = time.monotonic() + self.timeout
            payload = {
                "model": self.model,
                "prompt": f"{self.prompt}\n{text}",
                "stream": True,
            }
            chunks = []
            try:
                with self.session.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    stream=True,
                    timeout=self.timeout,
                ) as response:
                    response.raise_for_status()
                    for line in response.iter_lines():
                        if time.monotonic() > deadline:
                            raise SummarizationError(
                                f"generation exceeded {self.timeout}s timeout"
                            )
                        if not line:
                            continue
                        chunk = json.loads(line)
                        if chunk.get("error"):
                            raise SummarizationError(f"ollama: {chunk['error']}")
                        chunks.append(chunk.get("response", ""))
                        if chunk.get("done"):
                            break
            except requests.RequestException as e:
                raise SummarizationError(f"ollama request failed: {e}") from e
            except json.JSONDecodeError as e:
                raise SummarizationError(f"malformed ollama stream: {e}") from e

            summary = "".join(chunks)
            self.logger.info(
                "Ollama summary generated", model=self.model, response_length=len(summary)
            )
            return summary


class OpenAISummarizer:
    """Single chat-completion call against any OpenAI-compatible API.

    Leave ``base_url`` empty for api.openai.com, or point it at a local
    server (LM Studio, llama.cpp, Ollama's /v1 endpoint, ...).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        prompt: str,
        model: str,
        timeout: float,
        execution_id: str | None = None,
    ):
        # No SDK retries: one attempt keeps the call within ``timeout``.
        self.client = OpenAI(
            api_key=api_key, base_url=base_url or None, timeout=timeout, max_retries=0
        )
        self.prompt = prompt
        self.model = model
        self.timeout = timeout
        self.logger = get_logger("summarizer", execution_id)

    def summarize(self, text: str) -> str:
        """Generate a summary of ``text``.

        Raises:
            SummarizationError: If the API call fails or returns no choices
        """
        start_time = time.time()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.prompt},
                    {"role": "user", "content": text},
                ],
            )
        except openai.OpenAIError as e:
            raise SummarizationError(f"chat completion: {e}") from e

        if not response.choices:
            raise SummarizationError(f"empty response from model {self.model!r}")

        summary = response.choices[0].message.content or ""
        self.logger.info(
            "Chat completion summary generated",
            model=self.model,
            response_length=len(summary),
            response_time_ms=int((time.time() - start_time) * 1000),
        )
        return summary


def build_summarizer(config: SummarizerConfig, execution_id: str | None = None) -> Summarizer:
    """Instantiate the backend selected in the configuration."""
    if config.backend == "openai":
        return OpenAISummarizer(
            config.base_url,
            config.api_key,
            config.prompt,
            config.model,
            config.timeout,
            execution_id=execution_id,
        )
    if config.backend == "ollama":
        return OllamaSummarizer(
            config.base_url,
            config.prompt,
            config.model,
            config.timeout,
            execution_id=execution_id,
        )
    raise ValueError(f"Unknown summarizer backend: {config.backend!r}")
