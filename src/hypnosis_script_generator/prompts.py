"""Prompt templates for outline, section and regeneration calls."""

from __future__ import annotations

from .models import ExampleDocument

SYSTEM_PROMPT = """\
You are an experienced clinical hypnotherapist and script writer.

You write complete, spoken-word hypnosis scripts in markdown. Scripts use a
single "# Title" line followed by "## Section" headings (for example an
induction, a deepener, the therapeutic suggestions and an emergence). Write
in the second person, in a calm and permissive voice, with natural pauses
marked as "..." and without stage directions in brackets.
{examples_block}"""

OUTLINE_REQUEST = """\


Before writing the script, produce its outline only. Use exactly this format:

# <Script title>

## <Section title>
<One sentence describing what this section does>

## <Section title>
<One sentence describing what this section does>

Include between 4 and 8 sections. Do not write any section content yet.
"""

SCRIPT_REQUEST = """\
Write the full script for "{title}" following the outline, one section at a time:

{outline}
"""

SECTION_REQUEST = """\
Here is the outline of the script:

{outline}

{progress_block}\
Now write the section "## {section_title}" ({section_number} of {total_sections}).
Purpose of this section: {description}

Write at least {min_words} words of flowing script text. Output only the body
of this section: do not repeat the "## {section_title}" heading and do not start
the next section.
"""

SECTION_REGENERATION = """\
Rewrite the section "## {section_title}" of the script above.

The new version must be at least {min_words} words long, keep the same purpose
and tone, and flow naturally from the previous section into the next one.
Output only the body of the section, without its heading.
"""

EXAMPLES_INTRO = "\n\nHere are some example hypnosis scripts for reference:\n\n"
EXAMPLES_OUTRO = (
    "Use these examples as inspiration for structure, language patterns, and "
    "therapeutic approaches. Create a new script that follows similar quality and "
    "format while being unique and tailored to the user's specific request.\n\n"
)


def format_examples_for_prompt(examples: list[ExampleDocument]) -> str:
    if not examples:
        return ""
    parts = [EXAMPLES_INTRO]
    for index, example in enumerate(examples, 1):
        parts.append(f"### Example {index}\n{example.content.strip()}\n\n---\n\n")
    parts.append(EXAMPLES_OUTRO)
    return "".join(parts)


def system_prompt(examples: list[ExampleDocument] | None = None) -> str:
    return SYSTEM_PROMPT.format(examples_block=format_examples_for_prompt(examples or []))


def outline_request(user_prompt: str) -> str:
    return user_prompt.strip() + OUTLINE_REQUEST


def script_request(title: str, outline_text: str) -> str:
    return SCRIPT_REQUEST.format(title=title, outline=outline_text)


def section_request(
    *,
    outline_text: str,
    content_so_far: str,
    section_title: str,
    description: str,
    section_number: int,
    total_sections: int,
    min_words: int,
) -> str:
    """User message for one section: outline, what is written so far, instructions."""
    if content_so_far.strip():
        progress_block = f"Here is the script written so far:\n\n{content_so_far.strip()}\n\n"
    else:
        progress_block = "Nothing has been written yet; this is the opening section.\n\n"
    return SECTION_REQUEST.format(
        outline=outline_text,
        progress_block=progress_block,
        section_title=section_title,
        section_number=section_number,
        total_sections=total_sections,
        description=description or "continue the script naturally",
        min_words=min_words,
    )


def section_regeneration_prompt(section_title: str, min_words: int = 400) -> str:
    return SECTION_REGENERATION.format(section_title=section_title, min_words=min_words)
