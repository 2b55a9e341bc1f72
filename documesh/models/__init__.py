# =============================================================================
# Models Package: Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the database models (documesh/db/models.py).
# =============================================================================
