# =============================================================================
# Agents Package: Bounded Tool-Calling Agent
# =============================================================================
#   - chat.py: the agent loop (ask model → run tools → repeat, max 20 steps)
#   - tools.py: getSubmissionDetails and queryDatabase
#   - prompts.py: system prompt (tool rules, schema, formatting rules)
# =============================================================================
