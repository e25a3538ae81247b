"""Prefixed ID generation for jobs, deployments, runs and events."""

import uuid

JOB_PREFIX = "job_"
DEPLOYMENT_PREFIX = "dep_"
RUN_PREFIX = "run_"
EVENT_PREFIX = "evt_"
APPROVAL_PREFIX = "appr_"
AUDIT_PREFIX = "aud_"


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by 16 random hex characters.

    Job ids are assigned once at creation and never reused, so the random
    suffix is drawn from a fresh uuid4 every call.
    """
    return f"{prefix}{uuid.uuid4().hex[:16]}"
