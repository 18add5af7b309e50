"""Request payloads for the initialize / thread/start / turn/start sequence."""

from typing import Any

from .reader import PageContent

PROMPT_TEMPLATE = """\
Convert the following web page content to clean, well-structured Markdown.

Instructions:
- Extract the MAIN article/content only. Skip navigation, sidebars, footers, ads, cookie banners, and boilerplate.
- Use proper Markdown hierarchy: # for the title, ## for major sections, ### for subsections.
- Preserve code blocks with language hints (```python, ```javascript, etc.) if present.
- Preserve links as [text](url) where possible.
- Use bullet lists and numbered lists where the original uses them.
- For tables, use Markdown table syntax.
- Keep the content faithful to the original — do not add commentary or summaries.
- At the very end, add a source line: `> Source: [{title}]({url})`

Page title: {title}
Page URL: {url}

--- PAGE CONTENT ---
{body}
--- END PAGE CONTENT ---"""


def build_prompt(page: PageContent) -> str:
    """Fixed conversion prompt; page text is embedded verbatim."""
    # The body may contain braces; it never goes through str.format
    head, marker, tail = PROMPT_TEMPLATE.partition("{body}")
    head = head.format(title=page.title, url=page.url)
    return head + page.body_text + tail


def initialize_params(name: str, version: str) -> dict[str, Any]:
    return {"clientInfo": {"name": name, "version": version}}


def thread_start_params(model: str, cwd: str) -> dict[str, Any]:
    return {"model": model, "ephemeral": True, "cwd": cwd}


def turn_start_params(thread_id: str, page: PageContent, effort: str) -> dict[str, Any]:
    """One text input item carrying the full prompt."""
    return {
        "threadId": thread_id,
        "effort": effort,
        "input": [
            {
                "type": "text",
                "text": build_prompt(page),
                "textElements": [],
            }
        ],
    }
