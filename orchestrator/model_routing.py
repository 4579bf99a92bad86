"""
Model Routing - Selectable models and their provider labels
"""

AVAILABLE_MODELS = [
    {"id": "gemini-3-pro-high", "label": "Gemini 3 Pro High"},
    {"id": "gemini-3-pro-low", "label": "Gemini 3 Pro Low"},
    {"id": "claude-sonnet-4.5", "label": "Claude Sonnet 4.5"},
    {"id": "claude-sonnet-4.5-thinking", "label": "Claude Sonnet 4.5 (Thinking)"},
    {"id": "gpt-oss-120b", "label": "GPT OSS 120B (Medium)"},
]


def route_provider(model_id: str) -> str:
    """
    Pick the provider label for a model id.

    Args:
        model_id: Selected model identifier

    Returns:
        "google", "anthropic" or "openai"
    """
    model_id = (model_id or "").lower()
    if "claude" in model_id:
        return "anthropic"
    if "gemini" in model_id:
        return "google"
    return "openai"
