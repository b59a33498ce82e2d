"""Letter drafting through the Gemini REST API (generateContent)."""
import logging
from typing import Any, Dict, List, Optional, Sequence

from .config import LLM_429_BACKOFFS, gemini_api_key
from .errors import UpstreamError
from .fallback import Candidate, FallbackFetcher, FetchOutcome, has_key

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODELS = ("gemini-2.0-flash", "gemini-1.5-flash-latest")
LLM_TIMEOUT = 30

ROLE_LABELS = {
    "notary-fr": "Notary (French)",
    "agent-nl": "Estate agent (Dutch)",
    "seller-mixed": "Seller (French/Dutch)",
}

BASE_RULES = [
    "Write a concise, formal letter based solely on the dossier provided.",
    "Do not invent external facts. Do not include links.",
    "Use clear paragraphs.",
    "Do not include personal data; use placeholders such as <NAME>, <ADDRESS>, <DATE>.",
    "End with a short neutral closing and a one-line disclaimer.",
]

ROLE_RULES = {
    "notary-fr": [
        "LANGUAGE: French.",
        "ADDRESSEE: Notaire.",
        "CONTENT:",
        "- Ask for the cadastral references (section, numéro de parcelle) and any servitudes.",
        "- Ask for an État des Risques (ERP) no older than 6 months, if available.",
        "- Mention that DVF figures are commune-level and exact parcel information is needed.",
        "- Formal tone, short, letter format (salutation, body, closing).",
    ],
    "agent-nl": [
        "LANGUAGE: Dutch.",
        "ADDRESSEE: Estate agent (makelaar).",
        "CONTENT:",
        "- Request the exact address and cadastral data.",
        "- Ask for recent comparable sales nearby (beyond commune-level DVF).",
        "- Ask about known defects and pending procedures.",
        "- Formal, businesslike tone; concise.",
    ],
    "seller-mixed": [
        "LANGUAGE: bilingual; French first, then Dutch.",
        "ADDRESSEE: Seller.",
        "CONTENT:",
        "- Politely ask for a recent ERP (6 months or less), cadastral references and any servitudes or disputes.",
        "- Keep both languages short with identical content.",
        "- Separate the languages with the headings 'FR' and 'NL'.",
    ],
}


def build_letter_prompt(role: str, dossier: str) -> str:
    return "\n".join(BASE_RULES + [""] + ROLE_RULES[role] + ["", "DOSSIER:", dossier])


def extract_text(payload: Any) -> str:
    candidates = payload.get("candidates") if isinstance(payload, dict) else None
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(p.get("text") or "" for p in parts if isinstance(p, dict)).strip()


def model_candidates(api_key: str, prompt: str, models: Sequence[str] = DEFAULT_MODELS) -> List[Candidate]:
    body = {"contents": [{"parts": [{"text": prompt}]}]}
    return [
        Candidate(f"gemini {model}", f"{GEMINI_ENDPOINT}/{model}:generateContent", method="POST",
                  json_body=body, headers={"x-goog-api-key": api_key}, timeout=LLM_TIMEOUT,
                  accepts=has_key("candidates"), backoffs_429=LLM_429_BACKOFFS)
        for model in models
    ]


class LetterWriter:
    def __init__(self, fetcher: FallbackFetcher, models: Sequence[str] = DEFAULT_MODELS):
        self.fetcher = fetcher
        self.models = tuple(models)

    def _generate(self, prompt: str, models: Sequence[str], env: Optional[Dict[str, str]],
                  failure: str) -> FetchOutcome:
        api_key = gemini_api_key(env)
        outcome = self.fetcher.fetch_first_success(model_candidates(api_key, prompt, models))
        if not outcome.ok:
            last = outcome.error
            still_throttled = last is not None and last.upstream_status == 429
            message = ("LLM throttling persisted after backoff. Try again shortly."
                       if still_throttled else failure)
            logging.warning("%s %s", failure, last.message if last else "-")
            raise UpstreamError(message, status=429 if still_throttled else 502,
                                details={"tried": [a.candidate for a in outcome.attempts]})
        return outcome

    def compose(self, role: str, dossier: str, env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        outcome = self._generate(build_letter_prompt(role, dossier), self.models, env,
                                 "The LLM could not produce a letter.")
        throttled = any(a.status == 429 for a in outcome.attempts)
        return {
            "model": _model_name(outcome),
            "throttle_notice": "LLM throttled: backoff applied (2s then 4s)." if throttled else None,
            "role": role,
            "role_label": ROLE_LABELS[role],
            "output": {"letter_text": extract_text(outcome.data)},
        }

    def ping(self, prompt: str = "ping", model: str = "",
             env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Minimal round-trip: the requested model first, then the defaults."""
        models = [model] if model else []
        models += [m for m in self.models if m not in models]
        outcome = self._generate(prompt or "ping", models, env, "The LLM call failed for every model.")
        used = outcome.used.name
        return {
            "model": _model_name(outcome),
            "text": extract_text(outcome.data) or "[empty reply]",
            "retries": sum(1 for a in outcome.attempts if a.candidate == used and a.status == 429),
            "tried": [{"model": a.candidate.replace("gemini ", "", 1), "status": a.status, "error": a.error}
                      for a in outcome.attempts],
        }


def _model_name(outcome: FetchOutcome) -> str:
    return outcome.used.name.replace("gemini ", "", 1)
