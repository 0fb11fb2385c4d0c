"""
Demo data and the dehr demo application.
"""

from .seed import build_demo_entities, setup_demo

__all__ = [
    "build_demo_entities",
    "setup_demo",
]
