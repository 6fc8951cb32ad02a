# overskill: Centralize environment-driven configuration constants so every module imports the same knobs without circular dependencies. Per-app overrides live in .overskill/settings.yaml (see settings.py).

import os

# OpenAI env (Responses API)
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
AI_MODEL = os.environ.get("AI_MODEL", "gpt-5")  # OpenAI model id
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "").strip()

# Fallback provider used once per run after a primary provider error
FALLBACK_PROVIDER = os.environ.get("OVERSKILL_FALLBACK_PROVIDER", "openrouter").strip().lower()
FALLBACK_MODEL = os.environ.get("OVERSKILL_FALLBACK_MODEL", "anthropic/claude-sonnet-4")
OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY", "")

# Output token budget
MAX_COMPLETION_TOKENS = int(os.environ.get("OVERSKILL_MAX_COMPLETION_TOKENS", "32000"))

# AwaitingModel <-> ApplyingTools cycles per run
MAX_TURNS = int(os.environ.get("OVERSKILL_MAX_TURNS", "30"))

# Timeouts (seconds)
MODEL_TIMEOUT_SEC = float(os.environ.get("OVERSKILL_MODEL_TIMEOUT_SEC", "180"))
IMAGE_TIMEOUT_SEC = float(os.environ.get("OVERSKILL_IMAGE_TIMEOUT_SEC", "300"))

# Change tracker windows (seconds)
VOLATILE_WINDOW_SEC = float(os.environ.get("OVERSKILL_VOLATILE_WINDOW_SEC", "300"))
STABILITY_WINDOW_SEC = float(os.environ.get("OVERSKILL_STABILITY_WINDOW_SEC", "86400"))

# External collaborators
SERPAPI_API_KEY = os.environ.get("SERPAPI_API_KEY", "")
IMAGE_MODEL = os.environ.get("OVERSKILL_IMAGE_MODEL", "gpt-image-1")

# Transient retries inside a single provider before a ProviderError surfaces
HTTP_RETRIES = int(os.environ.get("OVERSKILL_HTTP_RETRIES", "2") or "0")

# Conversation history cap on load
CONV_CAP_TURNS = int(os.environ.get("OVERSKILL_CONV_CAP_TURNS", "200"))
