"""Core engine: intent hierarchy, platform protocol and LLM plumbing."""
