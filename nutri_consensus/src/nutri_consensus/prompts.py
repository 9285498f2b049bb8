"""Instruction text and request body for the meal analysis call."""

from typing import Any, Dict

ANALYSIS_PROMPT = """You are a nutrition expert AI. Analyze this food image and identify all food items with their estimated portions and nutritional values.

Provide a JSON response in this exact format:
{
  "items": [
    {
      "name": "Food item name",
      "quantity": 100,
      "unit": "g",
      "calories": 165,
      "carbs": 0,
      "fats": 10,
      "proteins": 20
    }
  ],
  "totalNutrition": {
    "calories": 165,
    "carbs": 0,
    "fats": 10,
    "proteins": 20
  }
}

Be accurate with portion sizes based on visual cues. Common portion references:
- Chicken breast: typically 150-200g
- Rice/quinoa cooked: 150-200g per serving
- Vegetables: 50-150g depending on type
- Salad greens: 50-100g

Only return the JSON, no other text."""


def image_data_url(image_base64: str) -> str:
    return f"data:image/jpeg;base64,{image_base64}"


def build_chat_body(model: str, image_base64: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
    """Build an OpenAI-format vision chat request."""
    return {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ANALYSIS_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_data_url(image_base64)}},
                ],
            }
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
