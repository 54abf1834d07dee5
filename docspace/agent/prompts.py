"""
Prompts for local form-field generation.

The model reads the extracted text of one PDF page and proposes the
fields a user would fill in. Its answer is a bare JSON object mapping
field names to definitions, the same shape the backend's generator
returns, so both feed the same translator.
"""

# Long pages drown the output instructions for small models
MAX_PAGE_TEXT_CHARS = 12000

FORM_FIELDS_SYSTEM_PROMPT = """\
You generate form fields from text extracted from a PDF page.

Identify every value a person would be expected to fill in on this page.
For each one, choose the input type that fits best:
- "text" for short answers (names, dates, numbers, emails)
- "multi-line text" for free-form answers (comments, descriptions)
- "checkbox" for a single yes/no tick box
- "radio" for one choice among a few visible options
- "dropdown" for one choice among many options

Respond with ONLY a JSON object. Keys are human-readable field names taken
from the page. Values are objects with a "type" and, for radio and dropdown,
an "options" list of the choices printed on the page. You may add a "label"
when the printed caption differs from the field name.

Example:
{
  "Full Name": {"type": "text"},
  "Email Address": {"type": "text"},
  "Comments": {"type": "multi-line text"},
  "Subscribe to newsletter": {"type": "checkbox"},
  "Preferred Contact Method": {"type": "dropdown", "options": ["Email", "Phone"]}
}

If the page contains nothing to fill in, respond with {}.
NO explanations. NO markdown. ONLY JSON."""

JSON_RETRY_PROMPT = (
    "WRONG. Your response was NOT a JSON object. "
    'Respond with ONLY a JSON object like {"Full Name": {"type": "text"}}. '
    "NO explanations. NO markdown. Try again now."
)


def build_page_prompt(page_text: str) -> str:
    """Wrap the page text for the user turn, truncating very long pages."""
    text = page_text.strip()
    if len(text) > MAX_PAGE_TEXT_CHARS:
        text = text[:MAX_PAGE_TEXT_CHARS] + "\n[... page text truncated ...]"
    return f"Text Content:\n{text}"
