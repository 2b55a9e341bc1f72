# =============================================================================
# Query Guard: Tenant-Scoped, Read-Only SQL Execution for the Agent
# =============================================================================
#
# The agent's `queryDatabase` tool hands us SQL written by an LLM. Before it
# touches the production database, the statement goes through:
#
#   Validating ──▶ Screening ──▶ Rewriting ──▶ Executing ──▶ Success
#       │              │             │             │
#       └──────────────┴─────────────┴─────────────┴──▶ QueryError
#
# 1. VALIDATE   non-empty string, at most 2000 characters
# 2. GATE       must start with SELECT
# 3. SCREEN     keyword/marker blocklist (DDL, DML, set operators, CTEs,
#               comments, catalog access, sleep/file primitives, functions
#               that read other relations or settings)
# 4. WHITELIST  must reference `submissions`, must not name identity or
#               agent tables
# 5. REWRITE    inject `org_id = '<tenant>'` into WHERE, append LIMIT 100;
#               clause keywords inside quoted literals are ignored
# 6. VERIFY     parse the scoped statement with sqlglot: one SELECT, no
#               nested SELECT, only `submissions`, no blocked functions,
#               tenant predicate is a top-level AND-conjunct of WHERE
# 7. EXECUTE    READ ONLY transaction, SET LOCAL statement_timeout/work_mem,
#               timed, rows capped at 100
#
# Every rejection and every execution failure comes back as a QueryError
# value. Nothing raises past this module except task cancellation, so a
# hostile or broken model-generated query can never crash the agent loop.
# Driver error text is never returned, only one of three fixed messages.
#
# KNOWN LIMITATION: steps 2-5 are text screening and text surgery, not a
# grammar. Step 6 closes the rewrite-evasion cases it can see (subqueries,
# OR-precedence, stray tables), at the cost of rejecting SQL that sqlglot's
# postgres dialect cannot parse.
# =============================================================================

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import sqlglot
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from documesh.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Guard Constants
# ---------------------------------------------------------------------------
# Hard ceilings. Not settings, not tool arguments.
# ---------------------------------------------------------------------------

ALLOWED_TABLE = "submissions"
TENANT_COLUMN = "org_id"

MAX_QUERY_LENGTH = 2000
ROW_LIMIT = 100
STATEMENT_TIMEOUT = "5s"
WORK_MEM = "64MB"
SLOW_QUERY_MS = 2000

# Identity, session and credential tables, plus stored agent chat history.
# Rejected even when `submissions` is also referenced.
FORBIDDEN_TABLES = (
    "users",
    "sessions",
    "accounts",
    "memberships",
    "organizations",
    "verifications",
    "agent_conversations",
    "agent_messages",
)

# Plain substring markers: comment delimiters, encoding escapes, catalog
# access, and abuse primitives.
_BLOCKED_MARKERS = (
    "--",
    "/*",
    "*/",
    "\\x",
    "char(",
    "chr(",
    "information_schema",
    "pg_catalog",
    "pg_",
    "version(",
    "lo_import",
    "lo_export",
    "file_read",
    "file_write",
    "pg_sleep",
    "benchmark",
    "waitfor",
)

# Word-boundary keywords, so `updated_at` or `created_at` do not trip
# `update` / `create`.
_BLOCKED_KEYWORDS = re.compile(
    r"\b(insert|update|delete|drop|create|alter|truncate|replace|grant"
    r"|revoke|exec|execute|copy|union|intersect|except|with)\b"
)

# Functions that read other relations or server state from inside an
# otherwise valid SELECT. Matched against call sites in the text and against
# function names in the parsed tree.
_BLOCKED_FUNCTION_NAMES = (
    r"pg_\w+|lo_\w+|dblink\w*|\w+_to_xml\w*|query_to_\w+|cursor_to_\w+"
    r"|current_setting|set_config"
)
_BLOCKED_FUNCTION_CALL = re.compile(rf"\b({_BLOCKED_FUNCTION_NAMES})\s*\(")
_BLOCKED_FUNCTION_NAME = re.compile(_BLOCKED_FUNCTION_NAMES)

_SELECT_PREFIX = re.compile(r"^\s*(/\*.*?\*/)?\s*select\b", re.DOTALL)

_TRAILING_TERMINATORS = re.compile(r"[;\s]+$")
_WHERE = re.compile(r"\bwhere\b", re.IGNORECASE)
_TRAILING_CLAUSE = re.compile(r"\b(group\s+by|order\s+by|limit|offset)\b", re.IGNORECASE)
_CONDITION_END = re.compile(
    r"\b(group\s+by|having|order\s+by|limit|offset)\b", re.IGNORECASE,
)
_OR = re.compile(r"\bor\b", re.IGNORECASE)
_LIMIT = re.compile(r"\blimit\b", re.IGNORECASE)
_LIMIT_VALUE = re.compile(r"\blimit\s+(\d+|all)\b", re.IGNORECASE)

# Mirrors SQLAlchemy's text() bind-parameter syntax so literal `:name`
# sequences in model-written SQL are escaped instead of becoming binds.
_BIND_MARKER = re.compile(r"(?<![:\w$\\]):([\w$]+)(?![:\w$])")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class QueryErrorCode(str, enum.Enum):
    """Why the guard refused (or failed) to return rows."""

    INVALID_INPUT = "invalid_input"
    UNSUPPORTED_STATEMENT_TYPE = "unsupported_statement_type"
    PROHIBITED_SYNTAX = "prohibited_syntax"
    FORBIDDEN_TABLE_ACCESS = "forbidden_table_access"
    MISSING_REQUIRED_TABLE_REFERENCE = "missing_required_table_reference"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_SYNTAX_ERROR = "execution_syntax_error"
    EXECUTION_GENERIC_FAILURE = "execution_generic_failure"


@dataclass
class QueryResult:
    """Rows returned by a guarded query (at most ROW_LIMIT of them)."""

    rows: list[dict[str, Any]]
    count: int
    scoped_query: str
    duration_ms: int

    def to_payload(self) -> dict[str, Any]:
        """Tool-result shape handed back to the model."""
        return {"rows": self.rows, "count": self.count}


@dataclass
class QueryError:
    """A sanitized refusal. `message` is safe to show the model and user."""

    code: QueryErrorCode
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


INVALID_SYNTAX_MESSAGE = "Invalid query syntax. Please check your SQL."
TIMEOUT_MESSAGE = "Query execution timeout. Please simplify your query."
GENERIC_FAILURE_MESSAGE = "Query execution failed. Please try again."
PROHIBITED_MESSAGE = "Query contains prohibited syntax"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def execute_guarded_query(
    session: AsyncSession,
    query: Any,
    org_id: str,
    request_id: str | None = None,
    structure_check: bool | None = None,
) -> QueryResult | QueryError:
    """
    Validate, scope, and run one model-written SELECT for one tenant.

    Args:
        session: A dedicated session for this query. The guard issues its
            READ ONLY / SET LOCAL statements on it, so it must not be shared
            with writes. The caller closes it (which rolls back).
        query: The raw `query` tool argument. Anything other than a
            non-empty string is rejected.
        org_id: The calling tenant. Supplied by the agent loop, never by
            the model.
        request_id: Correlation id for log lines.
        structure_check: Override for settings.query_structure_check.

    Returns:
        QueryResult on success, QueryError for every rejection or failure.
        The session is not touched unless the query passes every check.
    """
    rejection = validate_query(query)
    if rejection is not None:
        logger.warning(
            "Query rejected: code=%s, org_id=%s, request_id=%s, query=%r",
            rejection.code.value, org_id, request_id,
            query[:200] if isinstance(query, str) else query,
        )
        return rejection

    has_where = _WHERE.search(_mask_quoted(query)) is not None
    scoped = scope_query(query, org_id)

    logger.info(
        "Query transformed with org-scoping: transformation=%s, org_id=%s, "
        "request_id=%s, scoped_query=%s",
        "injected-and" if has_where else "added-where",
        org_id, request_id, scoped,
    )

    if structure_check is None:
        structure_check = settings.query_structure_check
    if structure_check:
        rejection = verify_structure(scoped, org_id)
        if rejection is not None:
            logger.warning(
                "Scoped query failed structure check: code=%s, org_id=%s, "
                "request_id=%s, scoped_query=%s",
                rejection.code.value, org_id, request_id, scoped,
            )
            return rejection

    try:
        await _apply_session_guards(session)

        start_time = time.monotonic()
        result = await session.execute(text(_escape_bind_markers(scoped)))
        rows = [dict(row) for row in result.mappings().fetchmany(ROW_LIMIT)]
        duration_ms = int((time.monotonic() - start_time) * 1000)
    except Exception as exc:
        logger.error(
            "Query execution failed: org_id=%s, request_id=%s, "
            "scoped_query=%s, error=%s",
            org_id, request_id, scoped, exc,
        )
        return sanitize_execution_error(exc)

    if duration_ms > SLOW_QUERY_MS:
        logger.warning(
            "Slow query detected: duration_ms=%d, org_id=%s, request_id=%s, "
            "scoped_query=%s",
            duration_ms, org_id, request_id, scoped,
        )

    logger.info(
        "Query executed: rows=%d, duration_ms=%d, org_id=%s, request_id=%s",
        len(rows), duration_ms, org_id, request_id,
    )

    return QueryResult(
        rows=rows,
        count=len(rows),
        scoped_query=scoped,
        duration_ms=duration_ms,
    )


def validate_query(query: Any) -> QueryError | None:
    """
    Run the shape, statement-type, blocklist, and table checks.

    Pure function; returns None when the query may proceed to rewriting.
    """
    if not query or not isinstance(query, str):
        return QueryError(QueryErrorCode.INVALID_INPUT, "Invalid query parameter")

    if len(query) > MAX_QUERY_LENGTH:
        return QueryError(
            QueryErrorCode.INVALID_INPUT,
            f"Query too long. Maximum {MAX_QUERY_LENGTH} characters.",
        )

    normalized = query.lower().strip()

    if not _SELECT_PREFIX.match(normalized):
        return QueryError(
            QueryErrorCode.UNSUPPORTED_STATEMENT_TYPE,
            "Only SELECT queries are allowed",
        )

    for marker in _BLOCKED_MARKERS:
        if marker in normalized:
            logger.warning("Blocked marker detected: marker=%r", marker)
            return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    keyword = _BLOCKED_KEYWORDS.search(normalized)
    if keyword is not None:
        logger.warning("Blocked keyword detected: keyword=%s", keyword.group(1))
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    function = _BLOCKED_FUNCTION_CALL.search(normalized)
    if function is not None:
        logger.warning("Blocked function detected: function=%s", function.group(1))
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    # One statement only; trailing terminators are stripped by the rewrite
    if ";" in _TRAILING_TERMINATORS.sub("", normalized):
        logger.warning("Statement separator detected")
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    if ALLOWED_TABLE not in normalized:
        return QueryError(
            QueryErrorCode.MISSING_REQUIRED_TABLE_REFERENCE,
            f"Query must reference the {ALLOWED_TABLE} table",
        )

    for table in FORBIDDEN_TABLES:
        if table in normalized:
            logger.warning("Forbidden table access attempt: table=%s", table)
            return QueryError(
                QueryErrorCode.FORBIDDEN_TABLE_ACCESS,
                f"Access to {table} table is not allowed",
            )

    return None


def scope_query(query: str, org_id: str) -> str:
    """
    Rewrite a validated SELECT so it only sees one tenant's rows.

    Deterministic text transformation, applied exactly once:
    - trailing `;` (and whitespace) removed
    - existing WHERE: `WHERE <cond>` → `WHERE org_id = '<id>' AND <cond>`,
      with <cond> parenthesised when it contains OR and otherwise kept
      exactly as written
    - keywords inside quoted literals or identifiers never count as clauses
    - no WHERE: ` WHERE org_id = '<id>'` inserted before the first
      GROUP BY / ORDER BY / LIMIT / OFFSET, or appended
    - no LIMIT in the original text: ` LIMIT 100` appended; a literal LIMIT
      above 100 (or LIMIT ALL) is lowered to 100

    Example:
        >>> scope_query("SELECT COUNT(*) FROM submissions", "org-123")
        "SELECT COUNT(*) FROM submissions WHERE org_id = 'org-123' LIMIT 100"
    """
    scoped = _TRAILING_TERMINATORS.sub("", query.strip())
    masked = _mask_quoted(scoped)
    predicate = f"{TENANT_COLUMN} = {_quote_literal(org_id)}"

    where = _WHERE.search(masked)
    if where is not None:
        head = scoped[: where.start()]
        end = _CONDITION_END.search(masked, where.end())
        split = end.start() if end is not None else len(scoped)
        condition, tail = scoped[where.end(): split], scoped[split:]
        if _OR.search(masked, where.end(), split):
            core = condition.strip()
            start = condition.index(core)
            condition = f"{condition[:start]}({core}){condition[start + len(core):]}"
        scoped = f"{head}WHERE {predicate} AND{condition}{tail}"
    else:
        clause = _TRAILING_CLAUSE.search(masked)
        if clause is not None:
            scoped = (
                f"{scoped[: clause.start()].rstrip()} WHERE {predicate} "
                f"{scoped[clause.start():]}"
            )
        else:
            scoped = f"{scoped} WHERE {predicate}"

    if _LIMIT.search(_mask_quoted(query)) is None:
        scoped = f"{scoped} LIMIT {ROW_LIMIT}"
    else:
        scoped = _clamp_limits(scoped)

    return scoped


def verify_structure(scoped_query: str, org_id: str) -> QueryError | None:
    """
    Parse the scoped statement and check the tenant invariant structurally.

    Rejects when the statement is not exactly one plain SELECT, contains a
    nested SELECT, reads a real table other than `submissions`, calls a
    function that reads other relations or server settings, or lacks
    `org_id = '<org_id>'` as a top-level AND-conjunct of its WHERE.
    """
    try:
        statements = [
            statement
            for statement in sqlglot.parse(scoped_query, read="postgres")
            if statement is not None
        ]
    except (ParseError, TokenError):
        return QueryError(QueryErrorCode.EXECUTION_SYNTAX_ERROR, INVALID_SYNTAX_MESSAGE)

    if len(statements) != 1 or not isinstance(statements[0], exp.Select):
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    root = statements[0]
    if root.args.get("with") is not None:
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)
    if any(select is not root for select in root.find_all(exp.Select)):
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    for table in root.find_all(exp.Table):
        # Table-valued functions (jsonb_array_elements(...) AS x) are fine
        if not isinstance(table.this, exp.Identifier):
            continue
        if table.name.lower() != ALLOWED_TABLE or table.db.lower() not in ("", "public"):
            return QueryError(
                QueryErrorCode.FORBIDDEN_TABLE_ACCESS,
                f"Query may only reference the {ALLOWED_TABLE} table",
            )

    for function in root.find_all(exp.Func):
        if isinstance(function, exp.Anonymous):
            name = function.name.lower()
        else:
            name = function.sql_name().lower()
        if _BLOCKED_FUNCTION_NAME.fullmatch(name):
            logger.warning("Blocked function in parsed query: function=%s", name)
            return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    where = root.args.get("where")
    if where is None:
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    condition = where.this.unnest()
    if isinstance(condition, exp.And):
        conjuncts = list(condition.flatten())
    else:
        conjuncts = [condition]

    if not any(_is_tenant_predicate(node, org_id) for node in conjuncts):
        return QueryError(QueryErrorCode.PROHIBITED_SYNTAX, PROHIBITED_MESSAGE)

    return None


def sanitize_execution_error(exc: BaseException) -> QueryError:
    """
    Map a driver/database failure onto one of three fixed messages.

    Classification looks at the underlying DBAPI error when SQLAlchemy has
    wrapped one (`exc.orig`), so the echoed SQL text in the wrapper's
    message cannot influence the category.
    """
    original = getattr(exc, "orig", None) or exc
    message = str(original).lower()

    if "column" in message or "table" in message or "syntax" in message:
        return QueryError(QueryErrorCode.EXECUTION_SYNTAX_ERROR, INVALID_SYNTAX_MESSAGE)

    if isinstance(original, TimeoutError) or "timeout" in message or "cancel" in message:
        return QueryError(QueryErrorCode.EXECUTION_TIMEOUT, TIMEOUT_MESSAGE)

    return QueryError(QueryErrorCode.EXECUTION_GENERIC_FAILURE, GENERIC_FAILURE_MESSAGE)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _apply_session_guards(session: AsyncSession) -> None:
    """Make the current transaction read-only and bound its resources."""
    await session.execute(text("SET TRANSACTION READ ONLY"))
    await session.execute(text(f"SET LOCAL statement_timeout = '{STATEMENT_TIMEOUT}'"))
    await session.execute(text(f"SET LOCAL work_mem = '{WORK_MEM}'"))


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _mask_quoted(sql: str) -> str:
    """Blank the contents of quoted literals and identifiers, keeping offsets."""
    chars = list(sql)
    quote = None
    for index, char in enumerate(chars):
        if quote is None:
            if char in ("'", '"'):
                quote = char
        elif char == quote:
            # A doubled quote inside a literal closes and reopens it
            quote = None
        else:
            chars[index] = " "
    return "".join(chars)


def _clamp_limits(sql: str) -> str:
    """Lower LIMIT ALL or a LIMIT above ROW_LIMIT, outside literals only."""
    for match in reversed(list(_LIMIT_VALUE.finditer(_mask_quoted(sql)))):
        value = match.group(1)
        if value.lower() == "all" or int(value) > ROW_LIMIT:
            sql = f"{sql[: match.start()]}LIMIT {ROW_LIMIT}{sql[match.end():]}"
    return sql


def _escape_bind_markers(sql: str) -> str:
    return _BIND_MARKER.sub(r"\\:\1", sql)


def _is_tenant_predicate(node: exp.Expression, org_id: str) -> bool:
    if not isinstance(node, exp.EQ):
        return False
    for column, literal in ((node.left, node.right), (node.right, node.left)):
        if (
            isinstance(column, exp.Column)
            and column.name.lower() == TENANT_COLUMN
            and isinstance(literal, exp.Literal)
            and literal.is_string
            and literal.this == org_id
        ):
            return True
    return False
