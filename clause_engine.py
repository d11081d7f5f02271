import json
import logging
from datetime import datetime
from typing import List

from gemini_client import GeminiGateway, extract_json

logger = logging.getLogger(__name__)

MAX_CLAUSE_TEXT = 8000

CLAUSE_TYPES = {
    "all": "all types of clauses including legal, contractual, procedural, and policy clauses",
    "legal": "legal clauses such as liability, indemnification, governing law, dispute resolution",
    "contractual": "contractual clauses such as terms, conditions, obligations, rights",
    "procedural": "procedural clauses such as processes, steps, requirements, procedures",
    "policy": "policy clauses such as rules, guidelines, standards, policies",
}

ANALYSIS_TYPES = {
    "comprehensive": "comprehensive analysis including legal implications, risks, and recommendations",
    "legal": "legal analysis focusing on legal implications and compliance",
    "risk": "risk analysis identifying potential risks and mitigation strategies",
    "summary": "summary analysis providing key points and implications",
}


def parse_reply(reply: str, missing_message: str) -> dict:
    """Best-effort JSON from a model reply; never raises."""
    try:
        data = extract_json(reply)
    except ValueError as e:
        logger.error("Invalid JSON in model reply: %s", e)
        return {"error": "Invalid JSON response"}
    if data is None:
        return {"error": missing_message}
    return data


def count_clauses(extracted: dict) -> int:
    clauses = extracted.get("clauses") if isinstance(extracted, dict) else None
    return len(clauses) if isinstance(clauses, list) else 0


class ClauseEngine:
    """Clause extraction and clause analysis prompts for legal documents"""

    def __init__(self, gateway: GeminiGateway):
        self.gateway = gateway

    def build_extraction_prompt(self, text: str, clause_types: List[str], language: str) -> str:
        known = [CLAUSE_TYPES[t] for t in clause_types if t in CLAUSE_TYPES and t != "all"]
        description = "; ".join(known) if known and "all" not in clause_types else CLAUSE_TYPES["all"]
        excerpt = text[:MAX_CLAUSE_TEXT] + (" ..." if len(text) > MAX_CLAUSE_TEXT else "")

        return f"""
Please analyze the following document and extract {description}.

Document Text:
{excerpt}

Please extract clauses and return them in the following JSON format:
{{
  "clauses": [
    {{
      "id": "unique_id",
      "type": "clause_type",
      "title": "clause_title",
      "text": "clause_text",
      "start_position": 0,
      "end_position": 100,
      "confidence": 0.95,
      "key_terms": ["term1", "term2"],
      "summary": "brief_summary"
    }}
  ],
  "metadata": {{
    "total_clauses": 5,
    "extraction_confidence": 0.92,
    "language": "{language}"
  }}
}}

Focus on:
1. Identifying distinct clauses with clear boundaries
2. Providing accurate titles and summaries
3. Extracting key terms and concepts
4. Assigning appropriate clause types
5. Providing confidence scores for each extraction

Return only valid JSON without any additional text or formatting.
"""

    def build_analysis_prompt(self, clause_data, analysis_type: str) -> str:
        description = ANALYSIS_TYPES.get(analysis_type, ANALYSIS_TYPES["comprehensive"])
        return f"""
Please provide a {description} for the following clause:

Clause Data:
{json.dumps(clause_data, indent=2)}

Please return the analysis in the following JSON format:
{{
  "analysis": {{
    "summary": "brief_summary",
    "key_points": ["point1", "point2"],
    "implications": ["implication1", "implication2"],
    "risks": ["risk1", "risk2"],
    "recommendations": ["recommendation1", "recommendation2"],
    "confidence": 0.95
  }},
  "metadata": {{
    "analysis_type": "{analysis_type}",
    "analyzed_at": "{datetime.utcnow().isoformat()}"
  }}
}}

Return only valid JSON without any additional text or formatting.
"""

    def extract(self, text: str, clause_types: List[str], language: str = "en") -> dict:
        """
        Extract structured clauses from document text

        Args:
            text: Full document text; only the leading part is sent
            clause_types: Requested clause families, e.g. ["legal"]
            language: Language code written into the result metadata

        Returns:
            Parsed clause payload, or ``{"error": ...}`` when the reply is not JSON
        """
        reply = self.gateway.generate(self.build_extraction_prompt(text, clause_types, language))
        return parse_reply(reply, "Could not parse response")

    def analyze(self, clause_data, analysis_type: str = "comprehensive") -> dict:
        reply = self.gateway.generate(self.build_analysis_prompt(clause_data, analysis_type))
        return parse_reply(reply, "Could not parse analysis response")
