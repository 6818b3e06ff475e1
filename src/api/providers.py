# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# src/api/providers.py
import time
import base64
import requests
from src.api.errors import AnalysisError, RateLimitError, ProviderHardStopError
from src.utils.logging import log_message, mask_key

API_TIMEOUT = 60
MAX_STATUS_RETRIES = 3
STATUS_RETRY_DELAY = 2.0
MAX_JSON_RETRIES = 3
JSON_RETRY_DELAY = 2.0

SUPPORTED_MODELS = {
    "openai": [
        "gpt-3.5-turbo",
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4.1-nano",
        "gpt-5",
        "gpt-5-mini",
        "gpt-5-nano",
    ],
    "gemini": [
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
        "gemini-2.5-flash",
        "gemini-2.5-flash-lite",
        "gemini-2.5-pro",
    ],
}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.0-flash-lite",
}


class ProviderAdapter:
    """
    One vision provider. Subclasses describe the wire format; `call` does the
    HTTP round trip and the provider-level backoff on throttling statuses.
    """

    name = None
    retry_statuses = (429,)

    def __init__(self, session=None, sleep=None, timeout=API_TIMEOUT):
        self.session = session or requests.Session()
        self.sleep = sleep or time.sleep
        self.timeout = timeout

    def endpoint(self, model, credential):
        raise NotImplementedError

    def headers(self, credential):
        return {"Content-Type": "application/json"}

    def format_payload(self, model, prompt, image_b64):
        raise NotImplementedError

    def parse_response(self, data):
        raise NotImplementedError

    def _error_detail(self, response):
        try:
            data = response.json()
        except ValueError:
            return response.text[:200]
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            return error.get("message") or "Unknown error"
        return str(data)[:200]

    def _post(self, model, credential, payload):
        url = self.endpoint(model, credential)
        try:
            return self.session.post(url, headers=self.headers(credential), json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise AnalysisError(f"{self.name} request timed out for {model}: {e}", transient=True)
        except requests.exceptions.RequestException as e:
            raise AnalysisError(f"{self.name} connection error for {model} ({type(e).__name__}): {e}", transient=True)

    def _send(self, model, credential, payload):
        retry_count = 0
        while True:
            log_message(f"Calling {self.name} model {model} with key {mask_key(credential)}", "debug")
            response = self._post(model, credential, payload)
            status = response.status_code

            if status in self.retry_statuses:
                label = "rate limit" if status == 429 else "service unavailable"
                if retry_count < MAX_STATUS_RETRIES:
                    delay = STATUS_RETRY_DELAY * (2 ** retry_count)
                    log_message(
                        f"{self.name} {label} ({status}) for {model}, retrying ({retry_count + 1}/{MAX_STATUS_RETRIES}) in {delay:.0f}s",
                        "warning",
                    )
                    self.sleep(delay)
                    retry_count += 1
                    continue
                if status == 429:
                    raise RateLimitError(
                        f"{self.name} API rate limit exceeded after {MAX_STATUS_RETRIES} retries", status_code=status
                    )
                raise AnalysisError(
                    f"{self.name} API service unavailable after {MAX_STATUS_RETRIES} retries", status_code=status
                )

            if status == 400:
                detail = self._error_detail(response)
                log_message(f"{self.name} API returned 400 Bad Request for {model}: {detail}", "error")
                raise ProviderHardStopError(f"{self.name} API returned 400 Bad Request - stopping process: {detail}")

            if not 200 <= status < 300:
                raise AnalysisError(
                    f"{self.name} API call failed: {status} - {self._error_detail(response)} for {model}",
                    status_code=status,
                )
            return response

    def call(self, model, credential, prompt, image_bytes=None):
        """Blocking request; returns the model's free-text answer."""
        image_b64 = base64.b64encode(image_bytes).decode("ascii") if image_bytes else None
        payload = self.format_payload(model, prompt, image_b64)
        json_retry = 0
        while True:
            response = self._send(model, credential, payload)
            try:
                data = response.json()
                return self.parse_response(data)
            except (ValueError, KeyError, IndexError, TypeError) as e:
                if json_retry < MAX_JSON_RETRIES:
                    json_retry += 1
                    log_message(
                        f"{self.name} JSON parsing error ({e}), retrying ({json_retry}/{MAX_JSON_RETRIES}) in {JSON_RETRY_DELAY:.0f}s",
                        "warning",
                    )
                    self.sleep(JSON_RETRY_DELAY)
                    continue
                raise AnalysisError(f"{self.name} JSON parsing failed after {MAX_JSON_RETRIES} retries: {e}")


class OpenAIProvider(ProviderAdapter):
    name = "OpenAI"
    api_url = "https://api.openai.com/v1/chat/completions"
    max_tokens = 300

    def endpoint(self, model, credential):
        return self.api_url

    def headers(self, credential):
        return {"Content-Type": "application/json", "Authorization": f"Bearer {credential}"}

    def format_payload(self, model, prompt, image_b64):
        content = [{"type": "text", "text": prompt}]
        if image_b64:
            content.append(
                {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}", "detail": "low"}}
            )
        payload = {"model": model, "messages": [{"role": "user", "content": content}]}
        # reasoning models reject max_tokens and spend part of the budget thinking
        if model.startswith("gpt-5"):
            payload["max_completion_tokens"] = self.max_tokens * 8
        else:
            payload["max_tokens"] = self.max_tokens
        return payload

    def parse_response(self, data):
        return data["choices"][0]["message"]["content"]


class GeminiProvider(ProviderAdapter):
    name = "Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models/"
    retry_statuses = (429, 503)

    def endpoint(self, model, credential):
        return f"{self.base_url}{model}:generateContent?key={credential}"

    def format_payload(self, model, prompt, image_b64):
        parts = [{"text": prompt}]
        if image_b64:
            parts.append({"inlineData": {"mimeType": "image/jpeg", "data": image_b64}})
        return {"contents": [{"parts": parts}]}

    def parse_response(self, data):
        return data["candidates"][0]["content"]["parts"][0]["text"]


PROVIDERS = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def get_provider(platform, **kwargs):
    try:
        provider_cls = PROVIDERS[platform]
    except KeyError:
        raise AnalysisError(f"Unknown platform '{platform}'. Supported: {', '.join(sorted(PROVIDERS))}")
    return provider_cls(**kwargs)

