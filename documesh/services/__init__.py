# =============================================================================
# Services Package: Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - query_guard.py: validate, tenant-scope and run model-written SELECTs
#   - llm.py: Multi-provider tool-calling LLM abstraction (Anthropic,
#     OpenAI-compatible)
#   - submissions.py / organizations.py / conversations.py: repositories
#   - auth.py: API key generation and hashing
# =============================================================================
