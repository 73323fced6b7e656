"""AI-generated chart summaries (Gemini generateContent over HTTP)."""
import json
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from logger import get_logger

logger = get_logger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_URL = os.getenv(
    "GEMINI_API_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
)

NO_ANALYSIS = "No analysis found."

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


def build_prompt(chart_title: str, chart_type: str, headers: Optional[Sequence[str]], data: Sequence[Dict[str, Any]]) -> str:
    columns = list(headers) if headers else list((data[0] if data else {}).keys())
    rows = "\n".join(json.dumps(row, default=str) for row in data)
    return (
        "You are an expert data analyst.\n\n"
        f"1. Give a clear summary of what is happening in this chart (title: {chart_title}, type: {chart_type}).\n"
        "2. Provide two detailed insights, each as a separate point.\n"
        "3. Suggest one actionable improvement or next step.\n\n"
        "Be specific and use the data provided. Format your answer as a plain, short, "
        "bulleted list (not JSON, not code block).\n\n"
        f"Columns: {', '.join(str(c) for c in columns)}\n"
        f"Total rows: {len(data)}\n\n"
        f"Data:\n{rows}"
    )


def gemini_generate(prompt: str) -> str:
    if not GEMINI_API_KEY:
        # Fallback demo response
        return "Gemini API key not configured. Returning placeholder analysis."
    url = GEMINI_API_URL.format(model=GEMINI_MODEL)
    payload = {"contents": [{"parts": [{"text": prompt}]}]}
    try:
        resp = requests.post(url, params={"key": GEMINI_API_KEY}, json=payload, timeout=60)
        resp.raise_for_status()
        data = resp.json()
        return data["candidates"][0]["content"]["parts"][0]["text"] or NO_ANALYSIS
    except (KeyError, IndexError, TypeError):
        return NO_ANALYSIS
    except requests.RequestException as e:
        logger.warning("AI provider request failed: %s", e)
        return f"AI provider error: {str(e)}"


def summary_lines(summary: Union[str, Sequence[str], None]) -> List[str]:
    """Normalize a stored or generated summary into non-empty insight lines."""
    if not summary:
        return []
    if isinstance(summary, str):
        chunks = summary.splitlines()
    else:
        chunks = [line for item in summary for line in str(item).splitlines()]
    lines = []
    for chunk in chunks:
        line = _BULLET.sub("", chunk).strip()
        if line:
            lines.append(line)
    return lines


def summarize_chart(chart_title: str, chart_type: str, headers: Optional[Sequence[str]], data: Sequence[Dict[str, Any]]) -> List[str]:
    text = gemini_generate(build_prompt(chart_title, chart_type, headers, data))
    return summary_lines(text)
