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

# src/api/analysis.py
import re
import json
import asyncio
from dataclasses import dataclass, field
from src.api.errors import ResponseFormatError
from src.api.prompts import MAX_DESCRIPTION_LENGTH
from src.api.providers import get_provider
from src.utils.logging import log_message, mask_key

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_KEYWORD_TRIM = " \t\r\n\"'.,;:"

INVALID_RESPONSE_MESSAGE = "Invalid response format from AI"


@dataclass
class AnalysisResult:
    title: str
    description: str
    keywords: list = field(default_factory=list)
    platform: str = ""
    model: str = ""
    api_key: str = ""

    def as_metadata(self):
        return {"title": self.title, "description": self.description, "keywords": list(self.keywords)}


def extract_json_object(text):
    """
    Return the first well-formed JSON object in free model text.

    The widest {...} span is tried first (it covers fenced or prefixed answers);
    when that does not decode, every '{' is tried in turn.
    """
    if not text:
        raise ResponseFormatError(INVALID_RESPONSE_MESSAGE)
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise ResponseFormatError(INVALID_RESPONSE_MESSAGE)
    try:
        data = json.loads(match.group(0))
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for start in [m.start() for m in re.finditer(r"\{", text)]:
        try:
            data, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise ResponseFormatError(f"{INVALID_RESPONSE_MESSAGE}: no decodable JSON object")


def normalize_keywords(keywords, limit=None):
    """
    Single words only (first word of any phrase), duplicates dropped
    case-insensitively in order, cut to `limit`. Accepts a list or a
    comma-separated string; applying it twice changes nothing.
    """
    if keywords is None:
        return []
    if isinstance(keywords, str):
        keywords = keywords.split(",")
    seen = set()
    result = []
    for raw in keywords:
        if raw is None:
            continue
        words = str(raw).strip(_KEYWORD_TRIM).split()
        if not words:
            continue
        word = words[0].strip(_KEYWORD_TRIM)
        if not word or word.casefold() in seen:
            continue
        seen.add(word.casefold())
        result.append(word)
    if limit is not None:
        result = result[:limit]
    return result


def truncate_description(description, max_length):
    if len(description) <= max_length:
        return description
    if max_length <= 3:
        return description[:max_length]
    return description[:max_length - 3] + "..."


def apply_editorial_prefix(description, prefix):
    """
    Prepend the editorial prefix, shortening only the AI-written part so the
    whole description stays within the 200 character limit.
    """
    description = (description or "").strip()
    if not prefix:
        return truncate_description(description, MAX_DESCRIPTION_LENGTH)
    room = max(MAX_DESCRIPTION_LENGTH - len(prefix), 0)
    return prefix + truncate_description(description, room)


def build_result(raw, platform, model, credential, keywords_count, editorial_prefix=""):
    title = str(raw.get("title") or "").strip()
    description = apply_editorial_prefix(str(raw.get("description") or ""), editorial_prefix)
    keywords = normalize_keywords(raw.get("keywords") or raw.get("tags"), keywords_count)
    return AnalysisResult(
        title=title,
        description=description,
        keywords=keywords,
        platform=platform,
        model=model,
        api_key=credential,
    )


class AnalysisClient:
    """Routes analysis requests to the adapter for each platform."""

    def __init__(self, session=None, sleep=None):
        self._session = session
        self._sleep = sleep
        self._providers = {}

    def provider(self, platform):
        if platform not in self._providers:
            self._providers[platform] = get_provider(platform, session=self._session, sleep=self._sleep)
        return self._providers[platform]

    async def analyze(self, platform, model, credential, prompt, image_bytes=None):
        provider = self.provider(platform)
        log_message(f"Analyzing with {platform}/{model} (key {mask_key(credential)})", "debug")
        text = await asyncio.to_thread(provider.call, model, credential, prompt, image_bytes)
        data = extract_json_object(text)
        return {
            "title": data.get("title", ""),
            "description": data.get("description", ""),
            "keywords": data.get("keywords", []),
        }
