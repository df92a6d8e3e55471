"""
Resolve public link tokens to jobs and estimates.

Three generations of links are still in circulation: the unified job token,
the legacy per-feature schedule/payment tokens, and estimate public tokens.
"""
import re
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from supabase import Client

from .db import fetch_one

# Precedence when several columns match
JOB_TOKEN_COLUMNS = ("unified_job_token", "schedule_token", "payment_token")
ESTIMATE_TOKEN = "estimate_public_token"

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{6,128}$")


@dataclass(frozen=True)
class ResolvedJob:
    job: Dict[str, Any]
    matched_by: str


def new_token() -> str:
    return secrets.token_urlsafe(24)


def is_valid_token(token: str) -> bool:
    # Also keeps the value safe to embed in a PostgREST or= filter
    return bool(token) and bool(_TOKEN_RE.match(token))


def resolve_job_by_token(client: Client, token: str) -> Optional[ResolvedJob]:
    if not is_valid_token(token):
        return None

    clause = ",".join(f"{col}.eq.{token}" for col in JOB_TOKEN_COLUMNS)
    rows = client.table("jobs").select("*").or_(clause).limit(len(JOB_TOKEN_COLUMNS)).execute().data or []

    for col in JOB_TOKEN_COLUMNS:
        for row in rows:
            if row.get(col) == token:
                return ResolvedJob(row, col)

    estimate = fetch_one(client, "estimates", "id,job_id", public_token=token)
    if estimate and estimate.get("job_id"):
        job = fetch_one(client, "jobs", "*", id=estimate["job_id"])
        if job:
            return ResolvedJob(job, ESTIMATE_TOKEN)
    return None


def resolve_estimate_by_token(client: Client, token: str) -> Optional[Dict[str, Any]]:
    if not is_valid_token(token):
        return None

    estimate = fetch_one(client, "estimates", "*", public_token=token)
    if estimate:
        return estimate

    resolved = resolve_job_by_token(client, token)
    if resolved is None:
        return None
    return fetch_one(client, "estimates", "*", job_id=resolved.job["id"])
