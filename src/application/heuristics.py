import math
import re
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from src.domain.models import HeuristicProfile

# (lower bound in parameters, recommendation), largest tier first
HARDWARE_TIERS = [
    (1_000_000_000, "High-end GPU (A100, H100) or TPU with 80GB+ VRAM, Multiple GPUs recommended"),
    (100_000_000, "High-end GPU (A100, RTX 4090) with 40GB+ VRAM"),
    (10_000_000, "Modern GPU (RTX 3080/4080) with 16GB+ VRAM"),
    (1_000_000, "Mid-range GPU (RTX 3060/4060) with 8GB+ VRAM"),
]
DEFAULT_HARDWARE = "Standard GPU (GTX 1660 or better) with 6GB+ VRAM, CPU fallback possible"

_PARAMETER_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([kmb]|parameters)?\b", re.IGNORECASE)
_UNIT_SCALE = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}

USE_CASE_KEYWORDS: Dict[str, List[str]] = {
    "text generation": ["generates text", "text generation", "writes"],
    "translation": ["translate", "translation", "language"],
    "sentiment analysis": ["sentiment", "emotion", "feeling"],
    "image classification": ["classify images", "image recognition"],
    "object detection": ["detect objects", "object detection"],
    "question answering": ["answer questions", "q&a", " qa "],
    "summarization": ["summarize", "summary"],
    "code generation": ["generate code", "programming"],
    "chatbot": ["chat", "conversation", "dialogue"],
    "recommendation": ["recommend", "recommendation"],
}

COMPARISON_TEMPLATES = [
    ("GPT", "Competes with OpenAI GPT models, offers alternative API access"),
    ("BERT", "Similar to Google BERT, bidirectional understanding, good for classification"),
    ("ResNet", "CNN architecture like VGG, efficient for image tasks"),
    ("T5", "Text-to-text transfer transformer, versatile for NLP tasks"),
    ("Stable Diffusion", "Diffusion model for image generation, open-source alternative"),
]

BASE_RISK_SCORE = 50
MAX_SUGGESTED_TAGS = 10


def parse_parameter_count(parameters: Optional[str]) -> int:
    """
    Converts strings like "7B", "350M" or "1.5 billion" to a parameter count.
    Unrecognized input yields 0.
    """
    if not parameters:
        return 0
    text = parameters.strip().lower().replace(",", "").replace("billion", "b").replace("million", "m")
    match = _PARAMETER_PATTERN.search(text)
    if match is None:
        return 0
    unit = (match.group(2) or "").lower()
    total = float(match.group(1)) * _UNIT_SCALE.get(unit, 1)
    if not math.isfinite(total):
        return 0
    return int(total)


class HeuristicEnricher:
    """Derives hardware, risk and discovery hints from an entity's text metadata. No I/O."""

    def ideal_hardware(self, parameters: Optional[str]) -> str:
        total = parse_parameter_count(parameters)
        for lower_bound, recommendation in HARDWARE_TIERS:
            if total > lower_bound:
                return recommendation
        return DEFAULT_HARDWARE

    def risk_score(self, model_type: Optional[str], parameters: Optional[str], capabilities: Sequence[str]) -> int:
        score = BASE_RISK_SCORE
        billions = parse_parameter_count(parameters) / 1_000_000_000
        if (model_type or "").upper() == "LLM" and billions > 70:
            score += 20
        if len(capabilities) > 5:
            score += 10
        if billions > 100:
            score += 15
        return max(0, min(100, score))

    def use_cases(self, description: Optional[str]) -> List[str]:
        text = f" {(description or '').lower()} "
        found = [use_case for use_case, terms in USE_CASE_KEYWORDS.items() if any(term in text for term in terms)]
        return found or ["General purpose"]

    def comparison_notes(self, name: str, model_type: str) -> str:
        for key, note in COMPARISON_TEMPLATES:
            if key in name:
                return note
        return f"A {model_type} model that may be compared with similar architectures in its category"

    def tutorial_links(self, name: str, model_type: str) -> List[Dict[str, str]]:
        links = [{
            "title": "HuggingFace Model Card",
            "url": f"https://huggingface.co/docs/transformers/model_doc/{quote(name.lower())}",
        }]
        if model_type in ("LLM", "NLP"):
            links.append({"title": "HuggingFace NLP Course", "url": "https://huggingface.co/learn/nlp-course"})
        return links

    def community_links(self, name: str) -> List[Dict[str, str]]:
        return [
            {"platform": "HuggingFace Discussion", "url": f"https://huggingface.co/{quote(name)}/discussions"},
            {"platform": "GitHub Issues", "url": f"https://github.com/search?q={quote(name, safe='')}"},
        ]

    def suggested_tags(self, model_type: Optional[str], capabilities: Sequence[str]) -> List[str]:
        tags: List[str] = []
        for tag in ([model_type] if model_type else []) + list(capabilities):
            if tag and tag not in tags:
                tags.append(tag)
        return tags[:MAX_SUGGESTED_TAGS]

    def enrich(
        self,
        name: str,
        description: Optional[str] = None,
        model_type: Optional[str] = None,
        parameters: Optional[str] = None,
        capabilities: Optional[Sequence[str]] = None,
    ) -> HeuristicProfile:
        """Same input always yields the same profile."""
        name = name or ""
        kind = model_type or "general"
        capabilities = [c for c in (capabilities or []) if isinstance(c, str)]

        return HeuristicProfile(
            ideal_hardware=self.ideal_hardware(parameters),
            risk_score=self.risk_score(model_type, parameters, capabilities),
            use_cases=self.use_cases(description),
            comparison_notes=self.comparison_notes(name, kind),
            tutorial_links=self.tutorial_links(name, kind),
            community_links=self.community_links(name),
            suggested_tags=self.suggested_tags(model_type, capabilities),
        )
