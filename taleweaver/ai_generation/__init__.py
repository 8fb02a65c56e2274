"""
Illustration generation package for TaleWeaver.
"""

from .optimize import optimize_image_for_web
from .prompting import StorybookPrompt, build_image_prompt, build_render_prompt
from .replicate_service import ReplicateIllustrator

__all__ = [
    "StorybookPrompt",
    "build_image_prompt",
    "build_render_prompt",
    "ReplicateIllustrator",
    "optimize_image_for_web",
]
