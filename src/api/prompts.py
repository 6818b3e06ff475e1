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

# src/api/prompts.py
import re
from datetime import date, datetime

MAX_DESCRIPTION_LENGTH = 200
MIN_DESCRIPTION_BUDGET = 50

# Camera, scanner, date and placeholder names carry no information about the content
IRRELEVANT_FILENAME_PATTERNS = [
    re.compile(r"^\d+$"),
    re.compile(r"^IMG_\d+$", re.IGNORECASE),
    re.compile(r"^DSC\d+$", re.IGNORECASE),
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{8,}$"),
    re.compile(r"^[A-Z0-9]{8,}$", re.IGNORECASE),
    re.compile(r"^(event|meeting|conference|session)_?\d*$", re.IGNORECASE),
    re.compile(r"^(photo|image|pic|picture)_?\d*$", re.IGNORECASE),
    re.compile(r"^untitled", re.IGNORECASE),
    re.compile(r"^new_file", re.IGNORECASE),
    re.compile(r"^copy_of", re.IGNORECASE),
]

# --- shared blocks ---
TASK_LIST = '''{opening} and provide:
1. Exactly {keywords_count} relevant keywords - MUST be SINGLE WORDS ONLY (no phrases or multi-word terms)
2. The FIRST 5 keywords MUST be the most relevant, trending, and important keywords
3. A clear, descriptive title ({title_instruction}){title_filename_note}
4. A detailed, engaging description ({description_instruction}) following this formula: [Descriptive Adjective(s)] + [Main Subject] + [Context or Setting] + [Emotive or Functional Hook]'''

FILENAME_CRITICAL = '''

CRITICAL: The filename "{filename}" contains important clues. You MUST use these clues in your title, description, and keywords.'''

FILENAME_HINT = '''

FILENAME HINT: The filename "{filename}" may contain useful context clues (like food type, location, etc.). Use this as secondary reference for your title, description, and keywords if it helps identify specific details that might not be obvious from the image alone.'''

DESCRIPTION_FORMULA = '''

DESCRIPTION FORMULA: Your description must follow this structure:
- Start with a complete, descriptive sentence that fully describes the main subject and context (NEVER start with "This", "A", "An", or just 1-3 adjectives)
- After the first comma, add an emotive or functional hook (Perfect for..., showcasing..., representing...){length_reminder}

Examples of good descriptions:
- "Vibrant virus being disrupted by antiviral medication in a digital environment represents scientific innovation, perfect for medical presentations."
- "Complex network of antibodies interacting with antigens against a dark background creates a stunning visualization, showcasing the intricate beauty of cellular life."
- "Colorful puzzle pieces scattered across a wooden surface create an engaging pattern, perfect for representing creativity and problem-solving concepts."'''

MAIN_SUBJECT_FOCUS = '''

MAIN SUBJECT FOCUS: Identify and prioritize the PRIMARY subject or focal point in the image. This could be:
- A person, animal, or group of people/animals
- An object, product, or item
- A building, landmark, or structure
- A scene, landscape, or environment
- An action, event, or activity
- Food, vehicle, artwork, or any other main element

The title MUST clearly describe what the main subject IS and what it's DOING (if applicable).'''

GEMINI_TITLE_FORMAT = '''

TITLE FORMAT: Write natural, descriptive titles using proper grammar. Include prepositions, articles, and connecting words to make titles flow naturally.
Examples:
- "Happy student with backpack walking in bright sunlight"
- "Smiling woman celebrating graduation ceremony outdoors"
- "Young girl looking up at the sky with positive expression"'''

OPENAI_TITLE_FORMAT = '''

TITLE FORMAT: Structure: [Main Subject] [Action/State] [Context/Setting] [Notable Details]. Use practical, descriptive language.'''

TITLE_CHARSET_RULE = '''

STRICT RULE: For the title, use ONLY alphanumeric characters, spaces, commas, and periods. NO other symbols including colons (:), semicolons (;), ampersands (&), quotes, or any other special characters.'''

TITLE_CHARSET_RULE_STRICT = '''

STRICT RULE: For the title, use ONLY alphanumeric characters and spaces. NO symbols at all including periods, commas, ampersands, colons, quotes, or any other special characters.'''

JSON_RESPONSE_FORMAT = '''

Format your response as JSON:
{
  "keywords": ["keyword1", "keyword2", ...],
  "title": "Title here",
  "description": "Description here"
}'''

TITLE_FORMATS = {
    "gemini": GEMINI_TITLE_FORMAT,
    "openai": OPENAI_TITLE_FORMAT,
}

# image-centric phrases -> filename-based phrases, for files with no raster preview
TEXT_ONLY_REWRITES = (
    ("image with filename", "media file with filename"),
    ("Analyze this image", "Analyze this media file based on its filename"),
    ("in the image", "based on the filename and file type"),
)


def is_filename_relevant(filename):
    """False when the filename stem looks machine-generated (camera counters, dates, codes)."""
    return not any(pattern.search(filename) for pattern in IRRELEVANT_FILENAME_PATTERNS)


def title_length_instruction(title_length):
    if title_length == 200:
        return "between 150-200 characters"
    return f"aim for {title_length} characters"


def description_length_instruction(max_description_length):
    if max_description_length < MAX_DESCRIPTION_LENGTH:
        return (
            f"max {max_description_length} characters - aim for "
            f"{max(max_description_length - 20, 30)}-{max_description_length} for maximum detail"
        )
    return "max 200 characters - aim for 180-200 for maximum detail"


def commercial_block(main_subject="", main_category="Default", additional_subject="", additional_category="Default"):
    if not main_subject and not additional_subject:
        return ""
    lines = ["", "", "COMMERCIAL REQUIREMENTS:"]
    if main_subject:
        lines.append(f'- MANDATORY: The title and description MUST mention "{main_subject}" (Category: {main_category})')
    if additional_subject:
        lines.append(
            f'- MANDATORY: The title and description MUST also mention "{additional_subject}" (Category: {additional_category})'
        )
    lines.append("- These subjects are critical for accurate identification and MUST be included in your response")
    lines.append("- Prioritize these subjects over generic descriptions to ensure specificity and commercial value")
    return "\n".join(lines)


def build_prompt(platform, filename, use_filename, keywords_count, title_length,
                 max_description_length=MAX_DESCRIPTION_LENGTH, commercial=None):
    """
    Build the analysis prompt for `platform` ("openai" or "gemini").

    With `use_filename` the filename is presented as a mandatory clue. Otherwise
    a relevant-looking filename is offered as a secondary hint and an
    irrelevant one is left out entirely. `commercial` is an optional dict with
    main_subject, main_category, additional_subject, additional_category.
    """
    commercial_text = commercial_block(**commercial) if commercial else ""
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    hint_relevant = not use_filename and is_filename_relevant(stem)

    if use_filename:
        opening = f'Analyze this image with filename "{filename}"'
        title_note = " - MUST incorporate filename context"
    else:
        opening = "Analyze this image"
        title_note = ""

    prompt = TASK_LIST.format(
        opening=opening,
        keywords_count=keywords_count,
        title_instruction=title_length_instruction(title_length),
        title_filename_note=title_note,
        description_instruction=description_length_instruction(max_description_length),
    )
    if use_filename:
        prompt += FILENAME_CRITICAL.format(filename=filename)
    elif hint_relevant:
        prompt += FILENAME_HINT.format(filename=filename)
    prompt += commercial_text

    length_reminder = ""
    if use_filename:
        length_reminder = (
            f"\n- ALWAYS aim for {max(max_description_length - 20, 30)}-{max_description_length} characters "
            "to provide maximum detail and engagement\n- Use rich, descriptive language and include specific visual details"
        )
    prompt += DESCRIPTION_FORMULA.format(length_reminder=length_reminder)
    prompt += MAIN_SUBJECT_FOCUS
    prompt += TITLE_FORMATS.get(platform, OPENAI_TITLE_FORMAT)
    if platform == "gemini" and not use_filename and not hint_relevant:
        prompt += TITLE_CHARSET_RULE_STRICT
    else:
        prompt += TITLE_CHARSET_RULE
    prompt += JSON_RESPONSE_FORMAT
    return prompt


def to_text_only_prompt(prompt):
    """Rewrite an image prompt for media that is analysed from its filename alone (EPS, AI)."""
    for old, new in TEXT_ONLY_REWRITES:
        prompt = prompt.replace(old, new)
    return prompt


def format_editorial_date(value):
    """'2026-10-19' (or a date) -> '19 October 2026'. Unparseable strings are returned unchanged."""
    if isinstance(value, (date, datetime)):
        parsed = value
    else:
        parsed = None
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d"):
            try:
                parsed = datetime.strptime(str(value).strip(), fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return str(value).strip()
    return f"{parsed.day} {parsed.strftime('%B')} {parsed.year}"


def editorial_prefix(place, date_value):
    """'Jakarta, Indonesia - 19 October 2026: '"""
    return f"{place} - {format_editorial_date(date_value)}: "


def description_budget(prefix=""):
    """Characters left for the AI-written description once an editorial prefix is reserved."""
    return max(MAX_DESCRIPTION_LENGTH - len(prefix), MIN_DESCRIPTION_BUDGET)
