import logging

from gemini_client import GeminiGateway, extract_json

logger = logging.getLogger(__name__)

MAX_QUERY_TEXT = 12000
DEFAULT_CONFIDENCE = 0.8
NO_JSON_CONFIDENCE = 0.7
BAD_JSON_CONFIDENCE = 0.5

QUERY_CONTEXTS = {
    "general": "general understanding and overview",
    "legal": "legal implications and compliance",
    "technical": "technical details and specifications",
    "summary": "summary and key points",
    "specific": "specific information and details",
}


def clamp_confidence(value, default: float = DEFAULT_CONFIDENCE) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    if confidence != confidence:  # NaN
        return default
    return min(max(confidence, 0.0), 1.0)


def _fallback(reply: str, confidence: float) -> dict:
    return {
        "answer": reply,
        "confidence": confidence,
        "sources": [],
        "key_points": [],
        "follow_up_questions": [],
        "summary": reply[:200] + "...",
        "parsed": False,
    }


class QueryEngine:
    """Answers free-form questions about a single document"""

    def __init__(self, gateway: GeminiGateway):
        self.gateway = gateway

    def build_prompt(self, text: str, question: str, context: str, language: str, title: str) -> str:
        focus = QUERY_CONTEXTS.get(context, QUERY_CONTEXTS["general"])
        excerpt = text[:MAX_QUERY_TEXT] + (" ..." if len(text) > MAX_QUERY_TEXT else "")

        return f"""
You are an AI assistant specialized in analyzing documents and answering questions. Please answer the following question about the document "{title}" with focus on {focus}.

Document Content:
{excerpt}

Question: {question}

Please provide a comprehensive answer in the following JSON format:
{{
  "answer": "detailed_answer_here",
  "confidence": 0.95,
  "sources": [
    {{
      "text": "relevant_quote_from_document",
      "page": 1,
      "section": "section_name"
    }}
  ],
  "key_points": ["point1", "point2", "point3"],
  "follow_up_questions": ["question1", "question2"],
  "summary": "brief_summary_of_answer"
}}

Guidelines:
1. Base your answer strictly on the document content
2. If information is not available in the document, clearly state this
3. Provide relevant quotes and references where possible
4. Suggest follow-up questions that might be helpful
5. Rate your confidence in the answer (0.0 to 1.0)
6. Keep the answer clear and well-structured
7. Use {language} language for the response

Return only valid JSON without any additional text or formatting.
"""

    def parse(self, reply: str) -> dict:
        """Normalize a model reply; plain text degrades to a lower-confidence answer."""
        try:
            data = extract_json(reply)
        except ValueError as e:
            logger.error("Parse query response error: %s", e)
            return _fallback(reply, BAD_JSON_CONFIDENCE)
        if data is None:
            return _fallback(reply, NO_JSON_CONFIDENCE)

        answer = data.get("answer")
        if not isinstance(answer, str) or not answer.strip():
            answer = reply
        return {
            "answer": answer,
            "confidence": clamp_confidence(data.get("confidence")),
            "sources": data.get("sources") or [],
            "key_points": data.get("key_points") or [],
            "follow_up_questions": data.get("follow_up_questions") or [],
            "summary": data.get("summary") or "",
            "parsed": True,
        }

    def answer(self, text: str, question: str, context: str = "general",
               language: str = "en", title: str = "") -> dict:
        prompt = self.build_prompt(text, question, context, language, title)
        return self.parse(self.gateway.generate(prompt))
