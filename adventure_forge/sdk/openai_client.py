"""
OpenAI completion client.

Implements the LLM collaborator used by the generation orchestrator.
Failures are loud: every SDK error is translated into
``UpstreamGenerationError`` and nothing is retried here.
"""

from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..config.loader import DEFAULT_MODEL
from ..core.errors import UpstreamGenerationError
from ..core.orchestrator import Completion


class OpenAICompletionClient:
    """Chat-completions wrapper returning ``Completion`` records.

    The underlying SDK client is built with ``max_retries=0``; retries are
    left to whoever re-triggers the generation.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout: float = 60.0
    ):
        """Initialize the OpenAI completion client.

        Args:
            model: OpenAI model name (required)
            api_key: API key; the SDK reads ``OPENAI_API_KEY`` when omitted
            timeout: Request timeout in seconds

        Raises:
            ValueError: If model is missing/empty or timeout is not positive
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.model = model
        self.timeout = timeout
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        response_format: Optional[str] = None
    ) -> Completion:
        """Run one chat completion.

        Args:
            system_prompt: System message content
            user_prompt: User message content
            temperature: Sampling temperature
            response_format: ``"json_object"`` to request JSON output

        Returns:
            Completion with the message text and total token usage

        Raises:
            UpstreamGenerationError: On any API, network or timeout failure,
                or when the response carries no message content
        """
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        kwargs: Dict[str, Any] = {}
        if response_format:
            kwargs["response_format"] = {"type": response_format}

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                **kwargs
            )
        except openai.RateLimitError as e:
            raise UpstreamGenerationError(
                f"OpenAI rate limit: {e}", reason="rate_limit", status_code=e.status_code
            ) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise UpstreamGenerationError(
                f"OpenAI authentication failed: {e}", reason="auth", status_code=e.status_code
            ) from e
        except openai.APITimeoutError as e:
            raise UpstreamGenerationError(f"OpenAI request timed out: {e}", reason="timeout") from e
        except openai.APIConnectionError as e:
            raise UpstreamGenerationError(f"OpenAI connection failed: {e}", reason="connection") from e
        except openai.APIStatusError as e:
            raise UpstreamGenerationError(
                f"OpenAI request failed: {e}", reason="upstream", status_code=e.status_code
            ) from e

        if not response.choices or response.choices[0].message.content is None:
            raise UpstreamGenerationError("OpenAI response contained no message content")

        usage = response.usage
        return Completion(
            text=response.choices[0].message.content,
            model=getattr(response, "model", None) or self.model,
            total_tokens=usage.total_tokens if usage else 0
        )
