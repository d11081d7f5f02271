import logging
from typing import List

from gemini_client import GeminiGateway, extract_json

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTIONS = {
    "common_issues": ["Response accuracy", "Relevance"],
    "improvement_priorities": ["Better context understanding", "More precise answers"],
    "specific_suggestions": ["Improve prompt engineering", "Add more training data"],
    "system_recommendations": ["Implement feedback loop", "Regular model updates"],
}


def _sentiment(rating: int) -> str:
    if rating >= 4:
        return "positive"
    if rating <= 2:
        return "negative"
    return "neutral"


def _analysis(sentiment: str, confidence: float) -> dict:
    return {
        "sentiment": sentiment,
        "key_issues": [],
        "improvement_areas": [],
        "suggestions": [],
        "confidence": confidence,
    }


class FeedbackEngine:
    """Sentiment and improvement insights from user feedback"""

    def __init__(self, gateway: GeminiGateway):
        self.gateway = gateway

    def analyze_feedback(self, feedback: str, rating: int, subject: str) -> dict:
        """
        Classify one piece of feedback.

        Falls back to a rating-derived sentiment when the reply is not JSON and
        to a neutral result when the gateway call itself fails.
        """
        prompt = f"""
Analyze the following user feedback for a document analysis system:

{subject}
Rating: {rating}/5
Feedback: {feedback}

Please provide insights in JSON format:
{{
  "sentiment": "positive|negative|neutral",
  "key_issues": ["issue1", "issue2"],
  "improvement_areas": ["area1", "area2"],
  "suggestions": ["suggestion1", "suggestion2"],
  "confidence": 0.85
}}

Focus on identifying patterns and actionable insights for improving the AI responses.
"""
        try:
            reply = self.gateway.generate(prompt)
        except Exception as e:
            logger.error("AI feedback analysis error: %s", e)
            return _analysis("neutral", 0.3)

        try:
            data = extract_json(reply)
        except ValueError as e:
            logger.error("AI analysis parse error: %s", e)
            data = None
        return data if data is not None else _analysis(_sentiment(rating), 0.5)

    def suggest_improvements(self, rows: List[dict], kind: str) -> dict:
        lines = "\n".join(
            f"Rating: {row['rating']}/5, Feedback: {row.get('feedback') or 'No text feedback'}"
            for row in rows
        )
        prompt = f"""
Analyze the following low-rated feedback for a {kind} system and provide improvement suggestions:

{lines}

Please provide suggestions in JSON format:
{{
  "common_issues": ["issue1", "issue2"],
  "improvement_priorities": ["priority1", "priority2"],
  "specific_suggestions": ["suggestion1", "suggestion2"],
  "system_recommendations": ["rec1", "rec2"]
}}

Focus on actionable improvements for the AI system.
"""
        try:
            reply = self.gateway.generate(prompt)
        except Exception as e:
            logger.error("Generate suggestions error: %s", e)
            return {key: [] for key in DEFAULT_SUGGESTIONS}

        try:
            data = extract_json(reply)
        except ValueError as e:
            logger.error("Suggestions parse error: %s", e)
            data = None
        return data if data is not None else dict(DEFAULT_SUGGESTIONS)
