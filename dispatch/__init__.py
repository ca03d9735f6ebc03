#Expose the high-level pipeline pieces:
#Candidate filtering (hard rules)
#Scoring / ranking
#Lifecycle + arbiter (time and races)
#Dispatcher orchestrator (the "one object" entry point)

from blood_requests.errors import BloodLinkError, ConflictError, ExpiredError, NotFoundError, ValidationError

from .arbiter import MatchArbiter, MatchReason, MatchResult
from .candidate_filter import build_base_candidates, compatible_donor_types, is_compatible
from .dispatcher import Dispatcher, build_notifier #the main object to call to run a request end to end
from .lifecycle import RequestLifecycle, SweepReport
from .policy import DispatchPolicy, default_dispatch_policy
from .scoring import Candidate, rank_candidates, score_candidate
from .settings import Settings

__all__ = [
    "build_base_candidates",
    "compatible_donor_types",
    "is_compatible",
    "rank_candidates",
    "score_candidate",
    "Candidate",
    "Dispatcher",
    "build_notifier",
    "MatchArbiter",
    "MatchReason",
    "MatchResult",
    "RequestLifecycle",
    "SweepReport",
    "DispatchPolicy",
    "default_dispatch_policy",
    "Settings",
    "BloodLinkError",
    "ConflictError",
    "ExpiredError",
    "NotFoundError",
    "ValidationError",
]
