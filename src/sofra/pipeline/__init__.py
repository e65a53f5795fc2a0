"""
Sofra - Generation pipeline (Menu Decision → Recipe Expansion).
"""

from sofra.pipeline.generation import GeneratedBundle, GenerationPipeline, Usage
from sofra.pipeline.extraction import extract_json, parse_reply

__all__ = [
    "GeneratedBundle",
    "GenerationPipeline",
    "Usage",
    "extract_json",
    "parse_reply",
]
