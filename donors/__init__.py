"""
Donors domain package.

Public API:
- Domain model: Donor
- Ranking knobs: DonorPolicy, default_donor_policy
"""
from .models import Donor
from .policy import DonorPolicy, default_donor_policy

__all__ = [
    "Donor",
    "DonorPolicy",
    "default_donor_policy",
]
