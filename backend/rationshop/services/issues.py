"""
Customer issues: free-text support tickets raised by customers, worked by admins.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from rationshop.errors import InvalidTransition, NotFound, ValidationFailed
from rationshop.models import CustomerIssue, ISSUE_PENDING, ISSUE_IN_PROGRESS, ISSUE_RESOLVED, ISSUE_STATUSES
from rationshop.services.customers import get_customer
from rationshop.utils import generate_id, utcnow

logger = logging.getLogger(__name__)

# resolved is terminal
ISSUE_TRANSITIONS = {
    ISSUE_PENDING: {ISSUE_IN_PROGRESS, ISSUE_RESOLVED},
    ISSUE_IN_PROGRESS: {ISSUE_PENDING, ISSUE_RESOLVED},
    ISSUE_RESOLVED: set(),
}


def issue_to_dict(issue: CustomerIssue) -> dict:
    return {
        "id": issue.id,
        "customer_id": issue.customer_id,
        "description": issue.description,
        "status": issue.status,
        "response": issue.response,
        "created_at": issue.created_at.isoformat() if issue.created_at else None,
        "updated_at": issue.updated_at.isoformat() if issue.updated_at else None,
    }


def get_issue(db: Session, issue_id: str) -> CustomerIssue:
    issue = db.get(CustomerIssue, issue_id)
    if issue is None:
        raise NotFound("Issue not found.", issue_id=issue_id)
    return issue


def create_issue(db: Session, customer_id: str, description: str) -> dict:
    description = (description or "").strip()
    if not description:
        raise ValidationFailed("Please describe the issue.")
    get_customer(db, customer_id)
    now = utcnow()
    issue = CustomerIssue(
        id=generate_id("iss"),
        customer_id=customer_id,
        description=description,
        status=ISSUE_PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(issue)
    db.flush()
    logger.info("issue_created", extra={"issue_id": issue.id, "customer_id": customer_id})
    return issue_to_dict(issue)


def list_issues(db: Session, customer_id: Optional[str] = None) -> list[dict]:
    """Newest first; restricted to one customer when customer_id is given."""
    q = db.query(CustomerIssue)
    if customer_id is not None:
        q = q.filter(CustomerIssue.customer_id == customer_id)
    return [issue_to_dict(i) for i in q.order_by(CustomerIssue.created_at.desc()).all()]


def set_issue_status(db: Session, issue_id: str, status: str) -> dict:
    if status not in ISSUE_STATUSES:
        raise InvalidTransition(f"Unknown issue status {status}.")
    issue = get_issue(db, issue_id)
    if status != issue.status and status not in ISSUE_TRANSITIONS[issue.status]:
        raise InvalidTransition(f"Cannot move an issue from {issue.status} to {status}.")
    issue.status = status
    issue.updated_at = utcnow()
    db.flush()
    logger.info("issue_status_changed", extra={"issue_id": issue.id, "status": status})
    return issue_to_dict(issue)


def respond_to_issue(db: Session, issue_id: str, response: str) -> dict:
    """Store the admin's response and mark the issue resolved."""
    response = (response or "").strip()
    if not response:
        raise ValidationFailed("Response cannot be empty.")
    issue = get_issue(db, issue_id)
    if issue.status == ISSUE_RESOLVED:
        raise InvalidTransition("This issue is already resolved.")
    issue.response = response
    issue.status = ISSUE_RESOLVED
    issue.updated_at = utcnow()
    db.flush()
    logger.info("issue_resolved", extra={"issue_id": issue.id})
    return issue_to_dict(issue)
