from .claude import ClaudeEngine

__all__ = ["ClaudeEngine"]
