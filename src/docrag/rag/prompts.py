"""Prompts, source context and canned messages for the answer path."""

from typing import Any, Optional

from docrag.models import AuditResult, SourceChunk

DEFAULT_LANGUAGE = "en"
CONTEXT_SEPARATOR = "\n\n---\n\n"

MESSAGES = {
    "en": {
        "empty_corpus": (
            "I don't have any documents available yet. Please upload files "
            "so I can answer your questions."
        ),
        "not_found": "I don't have this information in the documentation.",
        "degraded": "The answer is temporarily unavailable. Please try again.",
        "needs_verification": "Need verification workflow before answering this request.",
    },
    "cs": {
        "empty_corpus": (
            "Aktuálně nemám k dispozici žádné dokumenty. Prosím nahrajte soubory, "
            "abych mohl odpovídat na vaše dotazy."
        ),
        "not_found": "Tuto informaci v dokumentaci nemám.",
        "degraded": "Dočasný výpadek odpovědi. Zkus to prosím znovu.",
        "needs_verification": "Před odpovědí je nutné ověření.",
    },
}

GENERATOR_SYSTEM_PROMPTS = {
    "en": """You are a precise information retrieval assistant. You answer ONLY from the provided sources.

RULES:
1. EVERY claim MUST end with a citation in the format [ID], e.g. [1], [2].
2. If the information is not in the sources, answer: "I don't have this information in the documentation."
3. NEVER invent facts that are not in the sources.
4. Answer in English, briefly and to the point.
5. If the question is ambiguous, ask for clarification.

RESPONSE FORMAT:
- Use short paragraphs
- Every claim ends with a citation [ID]
- Do not list sources at the end (they are added automatically)""",
    "cs": """Jsi přesný asistent pro vyhledávání informací. Odpovídáš POUZE na základě poskytnutých zdrojů.

PRAVIDLA:
1. KAŽDÉ tvrzení MUSÍ být zakončeno citací ve formátu [ID], např. [1], [2].
2. Pokud informace není ve zdrojích, odpověz: "Tuto informaci v dokumentaci nemám."
3. NIKDY nevymýšlej fakta, která nejsou ve zdrojích.
4. Odpovídej česky, stručně a věcně.
5. Pokud je otázka nejednoznačná, požádej o upřesnění.

FORMÁT ODPOVĚDI:
- Používej krátké odstavce
- Každé tvrzení končí citací [ID]
- Na konci neuváděj seznam zdrojů (ten se generuje automaticky)""",
}

AUDITOR_SYSTEM_PROMPT = """You are a strict fact-checker. Your job is to verify that EVERY claim in the response is directly supported by the provided sources.

TASK:
1. For each sentence in the response, check if it has a citation [ID]
2. Verify the cited source actually supports the claim
3. Flag any claims that are:
   - Not supported by the cited source
   - Extrapolated beyond what the source says
   - Missing citations entirely

OUTPUT FORMAT (JSON):
{
  "verified": true/false,
  "confidence": 0.0-1.0,
  "assessment": "Brief summary of verification",
  "verifiedClaims": ["claim 1", "claim 2"],
  "removedClaims": ["any unsupported claims"],
  "correctedResponse": "Response with unsupported claims removed (same language as the response)"
}

Be STRICT. If in doubt, flag it."""


def resolve_language(language: Optional[str]) -> str:
    return language if language in MESSAGES else DEFAULT_LANGUAGE


def message(key: str, language: Optional[str] = None) -> str:
    return MESSAGES[resolve_language(language)][key]


def format_source(source: SourceChunk) -> str:
    return f"[{source.citation_id}] ({source.filename or 'Unknown'}, p.{source.page_number})\n{source.content}"


def build_context(sources: list[SourceChunk], char_budget: int) -> str:
    """Join whole sources until the next one would exceed ``char_budget``.

    The first source is always included, even when it alone exceeds the
    budget. A source is never cut mid-way.
    """
    blocks: list[str] = []
    used = 0
    for source in sources:
        block = format_source(source)
        cost = len(block) + (len(CONTEXT_SEPARATOR) if blocks else 0)
        if blocks and used + cost > char_budget:
            break
        blocks.append(block)
        used += cost
    return CONTEXT_SEPARATOR.join(blocks)


def generator_system_prompt(language: Optional[str] = None) -> str:
    return GENERATOR_SYSTEM_PROMPTS[resolve_language(language)]


def generator_user_prompt(query: str, context: str, language: Optional[str] = None) -> str:
    if resolve_language(language) == "cs":
        return f"ZDROJE:\n{context}\n\n---\n\nOTÁZKA: {query}"
    return f"SOURCES:\n{context}\n\n---\n\nQUESTION: {query}"


def auditor_user_prompt(response: str, context: str) -> str:
    return f"SOURCES:\n{context}\n\n---\n\nRESPONSE TO VERIFY:\n{response}"


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, (str, int, float))]


def parse_audit(payload: dict[str, Any], draft: str) -> AuditResult:
    """Build an AuditResult from the auditor's JSON object.

    ``verified`` here is the auditor's own verdict; the confidence
    threshold is applied by the orchestrator.
    """
    try:
        confidence = float(payload.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(1.0, max(0.0, confidence))

    corrected = payload.get("correctedResponse")
    return AuditResult(
        verified=payload.get("verified") is True,
        confidence=confidence,
        assessment=str(payload.get("assessment") or ""),
        verified_claims=_string_list(payload.get("verifiedClaims")),
        removed_claims=_string_list(payload.get("removedClaims")),
        corrected_response=corrected if isinstance(corrected, str) and corrected.strip() else draft,
    )
