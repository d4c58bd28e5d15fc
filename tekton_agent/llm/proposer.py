"""Generative patch proposals through an OpenAI-compatible chat completions API."""
from __future__ import annotations

import json
import re
from typing import Optional, Sequence

import requests
import yaml

from tekton_agent.core.exceptions import ProposerError
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import ChangeDescriptor, Proposal

SYSTEM_PROMPT = (
    "You are an expert in Tekton and CI/CD on OpenShift. Generate a complete Task YAML "
    "that safely generalizes the described Jumpstarter changes. Preserve existing fields; "
    "only add validated params/results/steps."
)

_FENCED_YAML = re.compile(r"```(?:yaml|yml)?\s*\n(.*?)```", re.IGNORECASE | re.DOTALL)


def extract_yaml(text: str) -> str:
    """Return the first fenced YAML block in *text*, or *text* itself."""
    match = _FENCED_YAML.search(text or "")
    return match.group(1) if match else (text or "")


class OpenAIProposer:
    """
    Asks a chat model for an updated Task document.

    Without an API key (or with ``enabled=False``) the proposer is a
    passthrough: it returns the input text with an explanatory note, so the
    generative path still completes offline.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://api.openai.com/v1",
                 model: str = "gpt-4o-mini", timeout: int = 60, enabled: bool = True,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.enabled = enabled
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "OpenAIProposer":
        return cls(
            api_key=config.openai_api_key,
            base_url=config.openai_base,
            model=config.openai_model,
            timeout=config.llm_timeout,
            enabled=config.enable_llm,
        )

    @property
    def available(self) -> bool:
        return bool(self.enabled and self.api_key)

    def propose(self, text: str, changes: Sequence[ChangeDescriptor]) -> Proposal:
        if not self.available:
            log_json("INFO", "proposer_passthrough", details={"reason": "no generation backend configured"})
            return Proposal(("OPENAI_API_KEY not set; returning original YAML",), text)

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps({
                    "taskYaml": text,
                    "changes": [c.to_dict() for c in changes],
                })},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/chat/completions"
        try:
            response = self.session.post(url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            log_json("ERROR", "proposer_request_failed", details={"url": url, "error": str(e)})
            raise ProposerError(f"LLM call failed: {e}") from e
        except ValueError as e:
            raise ProposerError(f"LLM returned a non-JSON body: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProposerError(f"LLM response missing message content: {e}") from e

        proposed = extract_yaml(content)
        try:
            yaml.safe_load(proposed)
        except yaml.YAMLError as e:
            raise ProposerError(f"LLM proposal is not valid YAML: {e}") from e

        log_json("INFO", "proposer_completed", details={"model": self.model, "chars": len(proposed)})
        return Proposal(("LLM-proposed changes",), proposed)
