# =============================================================================
# API Package: FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - chat.py: streaming agent endpoint
#   - conversations.py: stored conversation history
#   - deps.py: tenant resolution from the API key
# =============================================================================
