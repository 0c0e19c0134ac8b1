"""
Recall Engine - Conversational Memory and Response Quality Core

Vector-indexed long-term memory (chunked storage, similarity retrieval,
channel-aware waterfall budgeting, sibling reassembly) paired with a
layered duplicate-response detector and a bounded escalating-retry
generation loop.
"""

__version__ = "0.1.0"
