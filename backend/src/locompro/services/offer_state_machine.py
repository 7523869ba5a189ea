"""Offer state machine: validates transitions and enforces who may perform them.

pending is the initial state. accepted and finalized are terminal. rejected is
terminal for the buyer but the seller can reopen it with a counteroffer.
"""

from dataclasses import dataclass
from typing import Optional

from locompro.domain.enums import OfferAction, OfferActor, OfferStatus
from locompro.services.errors import StateConflictError, UnauthorizedError


@dataclass(frozen=True)
class TransitionRule:
    """Which states an action may start from, where it lands, and who may run it."""

    from_states: frozenset
    to_status: Optional[OfferStatus]  # None: status is left as-is (edit) or the row goes away (delete)
    actors: frozenset


S = OfferStatus
A = OfferActor
X = OfferAction

# ---------------------------------------------------------------------------
# Action table: action -> rule. ``None`` in from_states means "no offer yet".
# ---------------------------------------------------------------------------

ACTION_RULES: dict[OfferAction, TransitionRule] = {
    X.CREATE: TransitionRule(frozenset({None}), S.PENDING, frozenset({A.SELLER})),
    X.ACCEPT: TransitionRule(frozenset({S.PENDING}), S.ACCEPTED, frozenset({A.OWNER})),
    X.REJECT: TransitionRule(frozenset({S.PENDING}), S.REJECTED, frozenset({A.OWNER})),
    X.FINALIZE: TransitionRule(frozenset({S.PENDING}), S.FINALIZED, frozenset({A.SYSTEM})),
    X.COUNTEROFFER: TransitionRule(frozenset({S.REJECTED}), S.PENDING, frozenset({A.SELLER})),
    X.EDIT: TransitionRule(frozenset({S.PENDING, S.REJECTED}), None, frozenset({A.SELLER})),
    X.DELETE: TransitionRule(frozenset({S.PENDING, S.REJECTED}), None, frozenset({A.SELLER})),
}

# from_status -> {to_status: set_of_allowed_actors}
TRANSITION_MAP: dict[Optional[OfferStatus], dict[OfferStatus, set[OfferActor]]] = {}
for _rule in ACTION_RULES.values():
    if _rule.to_status is None:
        continue
    for _from in _rule.from_states:
        TRANSITION_MAP.setdefault(_from, {}).setdefault(_rule.to_status, set()).update(_rule.actors)

TERMINAL_STATES: set[OfferStatus] = {S.ACCEPTED, S.FINALIZED}

# Seller may remove the offer only before the buyer has settled on it
DELETABLE_STATES: set[OfferStatus] = set(ACTION_RULES[X.DELETE].from_states)

# Statuses that still count as a live bid from the seller on a buy request
LIVE_STATES: set[OfferStatus] = {S.PENDING, S.REJECTED}


def resolve_actor(actor_id: str, seller_id: str, owner_id: str) -> Optional[OfferActor]:
    """Map a user id onto the role it plays for one offer.

    Returns None when the user is neither the buy request owner nor the seller.
    """
    if actor_id == owner_id:
        return A.OWNER
    if actor_id == seller_id:
        return A.SELLER
    return None


def _status_enum(status) -> Optional[OfferStatus]:
    """Get OfferStatus from a model value (may be stored as string)."""
    if status is None or isinstance(status, OfferStatus):
        return status
    return OfferStatus(status)


class OfferStateMachine:
    """Validates offer actions and enforces role rules."""

    def validate(
        self,
        action: OfferAction,
        current_status,
        actor: Optional[OfferActor],
    ) -> Optional[OfferStatus]:
        """Return the status the offer lands in. Raise if the action is not allowed.

        Role is checked before state: a seller trying to accept gets
        UnauthorizedError even if the offer is already finalized.
        """
        rule = ACTION_RULES[action]
        current = _status_enum(current_status)

        if actor is None or actor not in rule.actors:
            allowed = ", ".join(sorted(a.value for a in rule.actors))
            raise UnauthorizedError(
                f"Actor {actor.value if actor else 'anonymous'} is not permitted to "
                f"{action.value} this offer (allowed: {allowed})"
            )

        if current not in rule.from_states:
            target = rule.to_status.value if rule.to_status else action.value
            raise StateConflictError(
                f"Cannot {action.value} an offer that is {current.value if current else 'missing'}",
                current_status=current.value if current else None,
                target_status=target,
            )

        return rule.to_status if rule.to_status is not None else current

    def validate_transition(
        self,
        current_status,
        target_status: OfferStatus,
        actor: OfferActor,
    ) -> bool:
        """Return True if ``current -> target`` is allowed for ``actor``, else raise."""
        current = _status_enum(current_status)
        allowed_targets = TRANSITION_MAP.get(current)
        if not allowed_targets:
            raise StateConflictError(
                f"No transitions allowed from {current.value if current else 'missing'}",
                current_status=current.value if current else None,
                target_status=target_status.value,
            )

        if target_status not in allowed_targets:
            raise StateConflictError(
                f"Transition from {current.value if current else 'missing'} to "
                f"{target_status.value} is not allowed",
                current_status=current.value if current else None,
                target_status=target_status.value,
            )

        allowed_actors = allowed_targets[target_status]
        if actor not in allowed_actors:
            raise UnauthorizedError(
                f"Actor {actor.value} is not permitted for this transition "
                f"(allowed: {', '.join(sorted(a.value for a in allowed_actors))})"
            )

        return True

    def get_allowed_actions(self, current_status, actor: Optional[OfferActor]) -> list[OfferAction]:
        """Return the actions ``actor`` may take on an offer in ``current_status``."""
        if actor is None:
            return []
        current = _status_enum(current_status)
        return [
            action
            for action, rule in ACTION_RULES.items()
            if action is not X.CREATE and current in rule.from_states and actor in rule.actors
        ]

    def get_allowed_transitions(self, current_status, actor: OfferActor) -> list[OfferStatus]:
        """Return list of valid next states for the given actor from the current status."""
        current = _status_enum(current_status)
        return [
            target
            for target, actors in TRANSITION_MAP.get(current, {}).items()
            if actor in actors
        ]
