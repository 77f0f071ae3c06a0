"""
Switchboard — a streaming gateway between chat clients and LLM providers.
"""

__version__ = "0.4.0"
