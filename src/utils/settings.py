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

# src/utils/settings.py
import os
import json
from dataclasses import dataclass, field, asdict
from src.api.errors import SettingsError
from src.api.prompts import MAX_DESCRIPTION_LENGTH, MIN_DESCRIPTION_BUDGET, editorial_prefix
from src.utils.logging import log_message

MIN_TITLE_LENGTH = 70
MAX_TITLE_LENGTH = 200

KEY_USAGE_ROTATION = "rotation"
KEY_USAGE_SIMULTANEOUS = "simultaneous"

# flat settings keys -> dataclass fields
_KEY_ALIASES = {
    "autoCleanUp": "auto_clean_up",
    "keywordsCount": "keywords_count",
    "titleLength": "title_length",
    "titleFileRename": "title_file_rename",
    "useFilenameAnalysis": "use_filename_analysis",
    "maxConcurrent": "max_concurrent",
    "editorialMode": "editorial_mode",
    "editorialPlace": "editorial_place",
    "editorialDate": "editorial_date",
    "commercialMode": "commercial_mode",
    "mainSubject": "main_subject",
    "mainSubjectCategory": "main_subject_category",
    "additionalSubject": "additional_subject",
    "additionalSubjectCategory": "additional_subject_category",
    "platform": "platform",
    "model": "model",
    "apiKeys": "api_keys",
    "keyUsageMethod": "key_usage_method",
}

_BOOL_FIELDS = {"auto_clean_up", "title_file_rename", "use_filename_analysis", "editorial_mode", "commercial_mode"}
_INT_FIELDS = {"keywords_count", "title_length", "max_concurrent"}


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in ("yes", "true", "1", "on")


@dataclass
class Settings:
    auto_clean_up: bool = True
    keywords_count: int = 10
    title_length: int = MIN_TITLE_LENGTH
    title_file_rename: bool = False
    use_filename_analysis: bool = True
    max_concurrent: int = 3
    editorial_mode: bool = False
    editorial_place: str = ""
    editorial_date: str = ""
    commercial_mode: bool = False
    main_subject: str = ""
    main_subject_category: str = "Default"
    additional_subject: str = ""
    additional_subject_category: str = "Default"
    platform: str = "openai"
    model: str = ""
    api_keys: list = field(default_factory=list)
    key_usage_method: str = KEY_USAGE_ROTATION

    @classmethod
    def from_mapping(cls, data):
        """
        Build settings from a flat mapping. Accepts both the camelCase keys of
        the settings file and the attribute names; unknown keys are ignored.
        Values such as "yes"/"no" and numeric strings are coerced.
        """
        values = {}
        for key, value in (data or {}).items():
            name = _KEY_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                log_message(f"Ignoring unknown setting '{key}'", "debug")
                continue
            if name in _BOOL_FIELDS:
                value = _to_bool(value)
            elif name in _INT_FIELDS:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise SettingsError(f"Setting '{key}' must be a whole number, got {value!r}")
            elif name == "api_keys":
                if isinstance(value, str):
                    value = [value]
                value = [str(k).strip() for k in value if str(k).strip()]
            elif value is not None:
                value = str(value)
            values[name] = value
        return cls(**values)

    def validate(self):
        from src.api.providers import SUPPORTED_MODELS

        if not MIN_TITLE_LENGTH <= self.title_length <= MAX_TITLE_LENGTH:
            raise SettingsError(
                f"titleLength must be between {MIN_TITLE_LENGTH} and {MAX_TITLE_LENGTH} characters, got {self.title_length}"
            )
        if self.max_concurrent < 1:
            raise SettingsError(f"maxConcurrent must be at least 1, got {self.max_concurrent}")
        if self.keywords_count < 1:
            raise SettingsError(f"keywordsCount must be at least 1, got {self.keywords_count}")
        if self.key_usage_method not in (KEY_USAGE_ROTATION, KEY_USAGE_SIMULTANEOUS):
            raise SettingsError(f"Unknown key usage method '{self.key_usage_method}'")
        if self.platform not in SUPPORTED_MODELS:
            raise SettingsError(f"Unknown platform '{self.platform}'")
        if self.editorial_mode and not (self.editorial_place and self.editorial_date):
            raise SettingsError("Editorial mode needs both a place and a date")
        if self.editorial_mode:
            prefix = editorial_prefix(self.editorial_place, self.editorial_date)
            if len(prefix) > MAX_DESCRIPTION_LENGTH - MIN_DESCRIPTION_BUDGET:
                raise SettingsError(
                    f"Editorial place and date are too long: the prefix must leave at least "
                    f"{MIN_DESCRIPTION_BUDGET} of {MAX_DESCRIPTION_LENGTH} description characters"
                )
        return self

    def resolved_model(self):
        from src.api.providers import DEFAULT_MODELS

        return self.model or DEFAULT_MODELS.get(self.platform, "")

    def to_mapping(self):
        reverse = {v: k for k, v in _KEY_ALIASES.items()}
        data = {}
        for name, value in asdict(self).items():
            if name == "api_keys":
                continue
            if name in ("title_file_rename", "use_filename_analysis"):
                value = "yes" if value else "no"
            data[reverse.get(name, name)] = value
        return data


def load_settings(path):
    if not path or not os.path.exists(path):
        log_message("No settings file found, using defaults", "debug")
        return Settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SettingsError(f"Cannot read settings file '{path}': {e}")
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file '{path}' must hold a JSON object")
    return Settings.from_mapping(data)


def save_settings(settings, path):
    """Write settings to `path` as JSON. Credentials are never persisted."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings.to_mapping(), f, indent=2)
    log_message(f"Settings saved to {path}")
