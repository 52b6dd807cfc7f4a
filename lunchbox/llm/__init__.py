"""
LLM integration layer.

Responsibilities:
- Manage Groq API configuration and credentials.
- Send chat completions for query translation and venue selection.
- Clean up and parse the loosely-formatted JSON that models return.
- Report failures so callers can fall back instead of erroring.
"""
