"""Tests for prompt construction and editorial helpers."""

from datetime import date

import pytest

from src.api.prompts import (
    build_prompt,
    description_budget,
    editorial_prefix,
    format_editorial_date,
    is_filename_relevant,
    to_text_only_prompt,
)


class TestFilenameRelevance:
    @pytest.mark.parametrize("stem", [
        "12345", "IMG_0042", "dsc0099", "2024-05-01_party", "20240501123000",
        "AB12CD34EF", "meeting_3", "photo", "picture_12", "Untitled-1", "new_file", "copy_of_beach",
    ])
    def test_machine_names_are_irrelevant(self, stem):
        assert is_filename_relevant(stem) is False

    @pytest.mark.parametrize("stem", ["fresh_grapes", "paris-eiffel-tower", "red car"])
    def test_descriptive_names_are_relevant(self, stem):
        assert is_filename_relevant(stem) is True


class TestBuildPrompt:
    def test_forced_filename_is_a_critical_clue(self):
        prompt = build_prompt("openai", "IMG_0001.jpg", True, 10, 70)
        assert 'with filename "IMG_0001.jpg"' in prompt
        assert "CRITICAL" in prompt

    def test_relevant_filename_is_a_hint(self):
        prompt = build_prompt("openai", "fresh_grapes.jpg", False, 10, 70)
        assert "FILENAME HINT" in prompt
        assert "fresh_grapes.jpg" in prompt

    def test_irrelevant_filename_is_left_out(self):
        prompt = build_prompt("gemini", "IMG_1234.jpg", False, 10, 70)
        assert "IMG_1234" not in prompt
        assert "ONLY alphanumeric characters and spaces" in prompt

    def test_counts_and_lengths(self):
        prompt = build_prompt("openai", "a.jpg", False, 25, 90, 150)
        assert "Exactly 25 relevant keywords" in prompt
        assert "aim for 90 characters" in prompt
        assert "max 150 characters - aim for 130-150" in prompt

    def test_full_title_length_uses_range(self):
        prompt = build_prompt("openai", "a.jpg", False, 10, 200)
        assert "between 150-200 characters" in prompt
        assert "max 200 characters - aim for 180-200" in prompt

    def test_platform_title_formats_differ(self):
        openai_prompt = build_prompt("openai", "a.jpg", False, 10, 70)
        gemini_prompt = build_prompt("gemini", "a.jpg", False, 10, 70)
        assert "[Main Subject] [Action/State]" in openai_prompt
        assert "Happy student with backpack" in gemini_prompt

    def test_commercial_subjects_are_mandatory(self):
        prompt = build_prompt("openai", "a.jpg", False, 10, 70, commercial={
            "main_subject": "Nike shoes",
            "main_category": "Product",
            "additional_subject": "running track",
            "additional_category": "Place",
        })
        assert 'MUST mention "Nike shoes" (Category: Product)' in prompt
        assert 'MUST also mention "running track" (Category: Place)' in prompt

    def test_asks_for_json(self):
        assert '"keywords": ["keyword1"' in build_prompt("openai", "a.jpg", False, 10, 70)


class TestTextOnly:
    def test_rewrites_image_phrases(self):
        prompt = to_text_only_prompt(build_prompt("openai", "logo.eps", False, 10, 70))
        assert prompt.startswith("Analyze this media file based on its filename and provide")
        assert "based on the filename and file type" in prompt
        assert "in the image" not in prompt

    def test_forced_filename_variant(self):
        prompt = to_text_only_prompt(build_prompt("openai", "logo.eps", True, 10, 70))
        assert prompt.startswith('Analyze this media file with filename "logo.eps"')
        assert "Analyze this image" not in prompt


class TestEditorial:
    def test_prefix_format(self):
        assert editorial_prefix("Jakarta, Indonesia", "2026-10-19") == "Jakarta, Indonesia - 19 October 2026: "

    def test_date_objects(self):
        assert format_editorial_date(date(2025, 1, 5)) == "5 January 2025"

    def test_unparseable_date_kept(self):
        assert format_editorial_date("last summer") == "last summer"

    def test_budget(self):
        assert description_budget("") == 200
        assert description_budget("x" * 30) == 170
        assert description_budget("x" * 190) == 50
