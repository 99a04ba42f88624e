"""Sampling settings for inference calls.

Every component that talks to the model imports its parameters from
here so that identical inputs produce comparable outputs across runs.
"""

# Classification wants a little variety in phrasing, fixes want less.
CLASSIFY_TEMPERATURE: float = 0.3
FIX_TEMPERATURE: float = 0.2

# Gemini's OpenAI-compatible API rejects ``top_p=0.0``; 1.0 is neutral.
LLM_TOP_P: float = 1.0

CLASSIFY_PARAMS: dict[str, object] = {
    "temperature": CLASSIFY_TEMPERATURE,
    "top_p": LLM_TOP_P,
}

FIX_PARAMS: dict[str, object] = {
    "temperature": FIX_TEMPERATURE,
    "top_p": LLM_TOP_P,
}
