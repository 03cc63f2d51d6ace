"""Prompt templates for email / URL / video-transcript analysis."""

from __future__ import annotations

from typing import Any

SUMMARY_DESCRIPTION = (
    "HTML summary of about 200 words. Use HTML tags (<strong>, <em>, <mark>, <a>) to highlight "
    "key concepts, tools, technologies and notable information. Start immediately with useful "
    "information, no redundant prefixes. Explain what the mentioned links/tools do."
)
TRANSCRIPT_SUMMARY_DESCRIPTION = (
    "HTML summary of at most 150 words based EXCLUSIVELY on the transcript. Use HTML tags "
    "(<strong>, <em>, <mark>, <a>) only for concepts explicitly mentioned. Start immediately with "
    "useful information. Do NOT invent information that is not in the transcript."
)


def response_schema(summary_description: str = SUMMARY_DESCRIPTION) -> dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "topic": {"type": "STRING"},
            "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
            "summaryHtml": {"type": "STRING", "description": summary_description},
            "urls": {"type": "ARRAY", "items": {"type": "STRING"}},
            "normalizedDate": {
                "type": "STRING",
                "description": "Date in YYYY-MM-DD HH:mm:ss format (example: 2025-11-29 07:50:00)",
            },
        },
        "required": ["topic", "tags", "summaryHtml", "urls", "normalizedDate"],
    }


RECORD_PROMPT = """You are an expert email analyst. Analyze the email below and extract valuable information in a direct, concise way.
Write every output field in Spanish.

METADATA:
- Subject: {subject}
- Date: {date}

CRITICAL SUMMARY RULES:
1. Never use redundant openers such as "Este correo electrónico notifica sobre...", "El mensaje informa que..." or "El correo menciona...".
2. Go straight to the point. Start with useful information immediately.
3. When the email contains links, describe WHAT each link or tool does, not just that a link exists.
   - Product/service: its main functionality.
   - Tutorial/article: the key concepts it teaches.
   - News: the main facts.
4. Newsletters or multi-section emails: summarize each article/section on its own and name the tools, technologies and concepts involved.
5. Be specific and technical where it applies. Avoid generalities.

TASKS:
1. normalizedDate: the send date normalized to YYYY-MM-DD HH:mm:ss.
2. topic: the main theme as a short phrase ("Newsletter Tecnología", "Facturación", "Tutorial", ...).
3. tags: 3-5 relevant tags (technologies, concepts, specific categories).
4. summaryHtml: an HTML summary of about 200 words that
   - starts with useful information, without redundant prefixes;
   - uses <strong>/<b> for key concepts and tool names, <em>/<i> for critical points, <mark> for highlights or calls to action and <a href="URL">text</a> for important links;
   - explains what each mentioned link/tool does and includes relevant technical details.
5. urls: EVERY valid http/https URL found in the body.

EMAIL CONTENT:
{body}

GOOD EXAMPLE:
"Tutorial de React sobre hooks avanzados: explica useReducer, useMemo y useCallback con ejemplos prácticos..."
BAD EXAMPLE:
"Este correo electrónico notifica sobre un nuevo tutorial de React que está disponible en el siguiente enlace..."
"""


TRANSCRIPT_PROMPT = """You are a content analyst. Analyze ONLY the YouTube video transcript provided below.
Write every output field in Spanish.

URL: {url}

FULL VIDEO TRANSCRIPT:
{transcript}

VIDEO METADATA (informational only, do NOT use it for the analysis):
{title_line}
{channel_line}

STRICT RULES:
FORBIDDEN:
- Inventing information that is not explicitly in the transcript.
- Describing features or capabilities the transcript does not mention.
- Generic phrases such as "revoluciona el campo", "herramienta indispensable" or "promete revolucionar" unless they appear in the transcript.
- Phrases like "el video ofrece", "el tutorial explora" or "se enseña" when the transcript does not say so.
ALLOWED:
- Mentioning ONLY what is EXPLICITLY said in the transcript.
- Keywords and concepts that appear literally, quoting specific sentences where possible.
- "Sin clasificar" or very general terms when the transcript is unclear.

TASKS:
1. topic: a short phrase built EXCLUSIVELY from words/concepts that appear in the transcript.
2. tags: 3-5 keywords that appear in the transcript or are direct variations of it.
3. summaryHtml: at most 150 words, starting with useful information, quoting the transcript when possible and using <strong> only for explicitly mentioned concepts.
4. urls: only the video URL: {url}
5. normalizedDate: the current date in YYYY-MM-DD HH:mm:ss format.

HALLUCINATION EXAMPLE (DO NOT DO THIS):
"Este video ofrece una introducción completa a la herramienta, que promete revolucionar el campo del diseño y facilita la generación de prototipos..."
"""


URL_PROMPT = """You are an expert web link analyst. Analyze the URL below and extract valuable information in a direct, concise way.
Write every output field in Spanish.

URL TO ANALYZE: {url}

{content_section}CRITICAL ANALYSIS RULES:
1. Twitter/X URLs (x.com or twitter.com):
   - {social_hint}
   - Summarize the whole thread when it is a thread and identify the author (@user) when relevant.
   - Name the specific technical subject; never generic topics such as "Publicación Red Social".
{video_rules}2. GitHub URLs:
   - {github_hint}
   - Mention the main technologies/languages and key features of the tool.
3. Articles/posts/blogs:
   - {article_hint}
   - Highlight the technologies and tools mentioned.
4. Never use redundant openers such as "Este enlace contiene..." or "La URL muestra...".
5. Be specific and technical: name technologies, key concepts and concrete features.

TASKS:
1. topic: the SPECIFIC main theme based ONLY on the provided content.
2. tags: 3-5 relevant tags.
3. summaryHtml: an HTML summary of about 200 words using <strong>, <em>, <mark> and <a href="{url}">text</a> for the main link.
4. urls: every related valid URL (the main URL alone is fine).
5. normalizedDate in YYYY-MM-DD HH:mm:ss format:
   - {date_hint}
   - When no date is available, use the current date.

FINAL NOTE:
- {content_note}
"""

_VIDEO_NO_TRANSCRIPT_RULES = """   YouTube URLs (youtube.com or youtu.be):
   - WARNING: only BASIC METADATA (title and description) is available. There is NO transcript.
   - Do not invent anything that is not explicitly in the metadata; prefer "Sin clasificar" or general terms when unsure.
"""


def build_record_prompt(*, subject: str, date: str, body: str) -> str:
    return RECORD_PROMPT.format(subject=subject, date=date, body=body)


def build_transcript_prompt(*, url: str, transcript: str, title: str = "", author: str = "") -> str:
    return TRANSCRIPT_PROMPT.format(
        url=url,
        transcript=transcript,
        title_line=f"Title: {title}" if title else "Title not available",
        channel_line=f"Channel: {author}" if author else "Channel not available",
    )


def _content_section(*, text: str, author: str, date: str, is_video: bool) -> str:
    if not text:
        return ""
    if is_video:
        section = f"YOUTUBE VIDEO METADATA (no transcript available):\n{text}\n"
        if author:
            section += f"\nChannel: {author}\n"
        section += "\nWARNING: only basic metadata, NO transcript. Be extremely conservative.\n\n"
        return section
    section = f"CONTENT EXTRACTED FROM THE URL:\n{text}\n"
    if author:
        section += f"\nAuthor: {author}\n"
    if date:
        section += f"\nContent date: {date}\n"
    return section + "\n"


def build_url_prompt(
    *,
    url: str,
    fetched_text: str = "",
    author: str = "",
    fetched_date: str = "",
    is_video: bool = False,
) -> str:
    has_content = bool(fetched_text)
    return URL_PROMPT.format(
        url=url,
        content_section=_content_section(text=fetched_text, author=author, date=fetched_date, is_video=is_video),
        social_hint=(
            "You have the REAL post content above. USE IT to analyze the specific subject."
            if has_content
            else "Base the analysis on the real post content when it is available."
        ),
        video_rules=_VIDEO_NO_TRANSCRIPT_RULES if is_video else "",
        github_hint=(
            "You have the REAL repository content above. USE IT to identify technologies and purpose."
            if has_content
            else "Infer the repository purpose from its name and owner."
        ),
        article_hint=(
            "You have the REAL article content above. USE IT to summarize the key concepts."
            if has_content
            else "Summarize the main concepts."
        ),
        date_hint=(
            f"USE the date extracted from the content: {fetched_date}"
            if fetched_date
            else "Use the content date (e.g. the post date) when it can be inferred."
        ),
        content_note=(
            "You HAVE the real extracted content. USE IT for a precise, specific analysis."
            if has_content
            else "Without extracted content, infer from the URL and your own knowledge."
        ),
    )
