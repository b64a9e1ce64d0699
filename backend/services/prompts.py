"""Prompt builders for product descriptions and SEO metadata."""
import json
import re
from typing import Dict

from models import DescriptionRequest, SeoRequest
from services.errors import InvalidGenerationOutput

# Descriptions with less visible text than this are treated as empty
MIN_DESCRIPTION_CHARS = 5

TAG_RE = re.compile(r"<[^>]*>")
CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

TONE_GUIDE = """Tone Rules:
- simple: Easy language, short sentences
- premium: Polished, elegant
- indian audience: Friendly, practical, no Western slang
- professional: Formal, trustworthy, expert
- persuasive: Compelling, action-oriented, benefit-focused
- witty: Fun, engaging, clever, light-hearted
- luxury: Exclusive, sophisticated, high-end vocabulary
- minimalist: Direct, clean, no fluff
- storytelling: Narrative, emotional connection, descriptive"""


def strip_html(html: str) -> str:
    return TAG_RE.sub("", html or "").strip()


def is_rewrite(request: DescriptionRequest) -> bool:
    """Rewrite when the existing description has real text, otherwise generate."""
    return len(strip_html(request.product_description)) >= MIN_DESCRIPTION_CHARS


def _custom_rule(request: DescriptionRequest) -> str:
    if not request.custom_instructions:
        return ""
    return f"- IMPORTANT: Follow these custom instructions: {request.custom_instructions}\n"


def build_description_prompt(request: DescriptionRequest) -> str:
    """Generate-mode prompt from the title, or rewrite-mode prompt from existing HTML."""
    tone = request.tone.value
    length = request.length.value

    if not is_rewrite(request):
        if not (request.product_title or "").strip():
            raise ValueError("Product title is required to generate a description.")
        return (
            "You write product descriptions for an online store.\n"
            "Write a new product description from the product title.\n\n"
            f"Product Title: {request.product_title}\n"
            f"Tone: {tone}\nLength: {length}\nLanguage: {request.language}\n\n"
            "Rules:\n"
            "- Focus on benefits and features implied by the title.\n"
            "- Do not invent specific specifications.\n"
            "- Output MUST be valid HTML. No emojis.\n"
            f"{_custom_rule(request)}\n"
            f"{TONE_GUIDE}\n\n"
            "Length Rules:\n- short: about 50 words\n- long: about 150 words\n\n"
            f"Return ONLY the HTML, written in {request.language}."
        )

    return (
        "You improve existing product descriptions for an online store.\n"
        "Rewrite the description below without changing its factual meaning.\n\n"
        "Rules:\n"
        "- Never add features that are not in the original.\n"
        "- Improve clarity and flow, fix grammar. No emojis.\n"
        "- Input is HTML, output MUST be valid HTML.\n"
        f"{_custom_rule(request)}\n"
        f"{TONE_GUIDE}\n\n"
        "Length Rules:\n- short: reduce verbosity\n- long: slightly expand explanations\n\n"
        f"Original description (HTML):\n{request.product_description}\n\n"
        f"Tone: {tone}\nLength: {length}\nLanguage: {request.language}\n\n"
        f"Return ONLY the rewritten HTML, written in {request.language}."
    )


def build_seo_prompt(request: SeoRequest) -> str:
    return (
        "You are an SEO expert for online stores.\n"
        "Write an SEO title and meta description for this product.\n\n"
        f"Product Title: {request.product_title}\n"
        f"Product Description: {request.product_description}\n"
        f"Target Keywords: {request.keywords}\n\n"
        "Rules:\n"
        "1. SEO title: at most 60 characters, main keyword near the start.\n"
        "2. Meta description: at most 160 characters, include keywords naturally.\n"
        '3. Output JSON only, with keys "title" and "description".\n'
    )


def parse_seo_output(text: str) -> Dict[str, str]:
    """Parse model output into {"title", "description"}, tolerating markdown code fences."""
    cleaned = CODE_FENCE_RE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise InvalidGenerationOutput(f"SEO output is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not data.get("title") or not data.get("description"):
        raise InvalidGenerationOutput("SEO output must contain 'title' and 'description'")
    return {"title": str(data["title"]).strip(), "description": str(data["description"]).strip()}
