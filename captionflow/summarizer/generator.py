from typing import Protocol
from google import genai
from google.genai import errors as genai_errors
from captionflow.domain.errors import SummarizerError

RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")

class TextGenerator(Protocol):
    def generate(self, prompt: str, api_key: str) -> str: ...

def is_rate_limited(error: Exception) -> bool:
    """True for quota / HTTP 429 errors, which warrant switching keys."""
    if isinstance(error, genai_errors.APIError) and error.code == 429:
        return True
    message = str(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)

class GeminiTextGenerator:
    """Text generation through the Gemini API."""

    def __init__(self, model: str = "gemini-2.5-flash"):
        self.model = model

    def generate(self, prompt: str, api_key: str) -> str:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(model=self.model, contents=prompt)
        text = response.text
        if not text:
            raise SummarizerError("empty response from Gemini")
        return text
