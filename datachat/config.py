import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# AI gateway - OpenAI-compatible chat completions in front of Gemini
AI_GATEWAY_API_KEY = (
    os.getenv("AI_GATEWAY_API_KEY")
    or os.getenv("LOVABLE_API_KEY")
    or os.getenv("GEMINI_API_KEY")
    or ""
)
AI_GATEWAY_URL = os.getenv(
    "AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions"
)
AI_MODEL = os.getenv("AI_MODEL", "google/gemini-2.5-flash")
LLM_TIMEOUT_SECONDS = int(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# Characters of file text embedded in a prompt
PROMPT_CHAR_LIMIT = int(os.getenv("PROMPT_CHAR_LIMIT", "5000"))

# Supabase
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv(
    "SUPABASE_ANON_KEY", ""
)
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")

# Server
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:8080"
    ).split(",")
    if origin.strip()
]
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
