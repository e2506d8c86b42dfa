"""Prompts for code extraction and theme labeling."""

CODING_SOURCE_CHAR_LIMIT = 12000
LABELING_MAX_CODES = 30

CODING_SYSTEM_PROMPT = """You are an expert qualitative researcher performing the initial coding phase of a thematic analysis.

For EACH source you are given, identify between {min_codes} and {max_codes} atomic codes. A code is a short, specific label for a single concept, finding, mechanism or perspective expressed in the source. Codes should be:
- Atomic: one idea per code
- Grounded: supported by the source's own text
- Specific: "Peer feedback improves revision quality", not "Feedback"

Research purpose: {purpose_description}
Extraction focus: {extraction_focus}

Respond with JSON only, in exactly this shape:
{{
  "codes": [
    {{
      "source_id": "<id attribute of the source the code came from>",
      "label": "<2-8 word code label>",
      "description": "<one sentence explaining the code>",
      "excerpt": "<short verbatim quote from the source supporting the code>"
    }}
  ]
}}"""

CODING_USER_TEMPLATE = """Extract codes from the following {count} sources.

{sources}"""

SOURCE_BLOCK_TEMPLATE = """<source id="{source_id}" type="{source_type}">
Title: {title}

{body}
</source>"""

LABELING_SYSTEM_PROMPT = """You are an expert qualitative researcher naming themes in a thematic analysis.

You are given a cluster of related codes extracted from research sources. Name the theme they share.

Research purpose: {purpose_description}
Validation rigor: {rigor}

Respond with JSON only, in exactly this shape:
{{
  "label": "<concise theme name, 2-6 words>",
  "description": "<1-2 sentences describing what the theme covers>",
  "definition": "<a precise academic definition of the theme, 1-3 sentences>",
  "keywords": ["<3-7 key terms>"]
}}"""

LABELING_USER_TEMPLATE = """Theme cluster with {code_count} codes from {source_count} sources:

{codes}"""


def build_source_block(source_id: str, source_type: str, title: str, body: str) -> str:
    if len(body) > CODING_SOURCE_CHAR_LIMIT:
        body = body[:CODING_SOURCE_CHAR_LIMIT] + "\n[... truncated]"
    return SOURCE_BLOCK_TEMPLATE.format(
        source_id=source_id,
        source_type=source_type,
        title=title or "Untitled",
        body=body,
    )
