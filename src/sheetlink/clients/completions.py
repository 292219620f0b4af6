"""Chat-completion client for JSON answers (OpenAI or Azure OpenAI).

Learn: Jobs only ever need one thing from the model — "here is a prompt,
give me back a JSON object". Azure and OpenAI differ in URL shape and
auth header, nothing else, so one small httpx client covers both.
"""

import json
from typing import Any, Optional, Protocol

import httpx


class CompletionError(Exception):
    """The model call failed or did not return a JSON object."""
    pass


class CompletionClient(Protocol):
    async def complete_json(self, prompt: str) -> dict[str, Any]: ...


class ChatCompletionClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        *,
        model: str = "gpt-4o",
        azure_deployment: str = "",
        azure_api_version: str = "2024-06-01",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.model = model
        self.azure_deployment = azure_deployment
        self.azure_api_version = azure_api_version

        if azure_deployment:
            headers = {"api-key": api_key}
        else:
            headers = {"Authorization": f"Bearer {api_key}"}
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )

    async def complete_json(self, prompt: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [{"role": "user", "content": prompt}],
            "response_format": {"type": "json_object"},
        }
        if self.azure_deployment:
            path = f"/openai/deployments/{self.azure_deployment}/chat/completions"
            params = {"api-version": self.azure_api_version}
        else:
            path = "/chat/completions"
            params = {}
            body["model"] = self.model

        try:
            r = await self._http.post(path, params=params, json=body)
            r.raise_for_status()
            content = r.json()["choices"][0]["message"]["content"] or "{}"
            parsed = json.loads(content)
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e
        except (KeyError, IndexError, json.JSONDecodeError) as e:
            raise CompletionError(f"Malformed completion response: {e}") from e

        if not isinstance(parsed, dict):
            raise CompletionError("Completion did not return a JSON object")
        return parsed

    async def aclose(self) -> None:
        await self._http.aclose()
