#Purpose: Non-routing hard eligibility filtering (rule gates).
#Builds the base candidate set before distance/scoring.
#Typical responsibilities:
#blood type compatibility (red-cell ABO/Rh rules)
#available
#opted in to notifications
#Output: "rule-qualified donors" (still not ranked).

from typing import Dict, FrozenSet, Iterable, List

from blood_requests.models import BloodType
from donors.models import Donor

# Red-cell donation table: donor type -> recipient types it can safely give to.
# The lookup the core needs (required type -> acceptable donor types) is the
# inverse of this table, built once below.
RBC_RECIPIENTS_BY_DONOR: Dict[BloodType, FrozenSet[BloodType]] = {
    BloodType.O_NEG: frozenset(BloodType),  # universal donor
    BloodType.O_POS: frozenset({BloodType.O_POS, BloodType.A_POS, BloodType.B_POS, BloodType.AB_POS}),
    BloodType.A_NEG: frozenset({BloodType.A_NEG, BloodType.A_POS, BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.A_POS: frozenset({BloodType.A_POS, BloodType.AB_POS}),
    BloodType.B_NEG: frozenset({BloodType.B_NEG, BloodType.B_POS, BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.B_POS: frozenset({BloodType.B_POS, BloodType.AB_POS}),
    BloodType.AB_NEG: frozenset({BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.AB_POS: frozenset({BloodType.AB_POS}),  # universal recipient
}

DONOR_TYPES_BY_RECIPIENT: Dict[BloodType, FrozenSet[BloodType]] = {
    recipient: frozenset(
        donor_type for donor_type, recipients in RBC_RECIPIENTS_BY_DONOR.items() if recipient in recipients
    )
    for recipient in BloodType
}


def compatible_donor_types(required_type: BloodType) -> FrozenSet[BloodType]:
    """
    Donor blood types acceptable for a request of required_type.
    Total over BloodType: every type at least accepts itself and O-.
    """
    return DONOR_TYPES_BY_RECIPIENT[BloodType.parse(required_type)]


def is_compatible(donor_type: BloodType, required_type: BloodType) -> bool:
    return BloodType.parse(donor_type) in compatible_donor_types(required_type)


def build_base_candidates(donors: Iterable[Donor], required_type: BloodType) -> List[Donor]:
    """
    Returns only donors who are available, want alerts, and carry a
    blood type that can be given to required_type.
    """
    acceptable = compatible_donor_types(required_type)
    eligible = []

    for donor in donors:
        if not donor.available:
            continue

        if not donor.notifications_opt_in:
            continue

        if donor.blood_type not in acceptable:
            continue

        eligible.append(donor)

    return eligible
