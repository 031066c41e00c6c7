# medride/services/rides/state_machine.py
"""
Таблица переходов статусов поездки и правила доступа к ним.

Каждое ребро задаётся одной записью TransitionRule; добавление статуса
или ребра меняет только таблицу TRANSITIONS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from medride.common.constants import DEFAULT_CANCELLATION_REASON, RideStatus, UserRole
from medride.common.exceptions import AuthorizationError, ClaimRequired, InvalidTransition
from medride.shared.models.ride import Ride
from medride.shared.models.user import Identity


class Party(str, Enum):
    """Кем приходится пользователь конкретной поездке."""
    ANY_DRIVER = "any_driver"
    ASSIGNED_DRIVER = "assigned_driver"
    PATIENT = "patient"
    BOOKING_FACILITY = "booking_facility"
    ADMIN = "admin"


_CANCEL_BEFORE_ASSIGNMENT = frozenset({Party.PATIENT, Party.BOOKING_FACILITY, Party.ADMIN})
_CANCEL_AFTER_ASSIGNMENT = _CANCEL_BEFORE_ASSIGNMENT | {Party.ASSIGNED_DRIVER}


@dataclass(frozen=True)
class TransitionRule:
    source: RideStatus
    target: RideStatus
    parties: frozenset[Party]
    # pending -> accepted выполняется только через атомарный захват
    via_claim: bool = False


TRANSITIONS: tuple[TransitionRule, ...] = (
    TransitionRule(RideStatus.PENDING, RideStatus.ACCEPTED, frozenset({Party.ANY_DRIVER}), via_claim=True),
    TransitionRule(RideStatus.PENDING, RideStatus.CANCELLED, _CANCEL_BEFORE_ASSIGNMENT),
    TransitionRule(RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, frozenset({Party.ASSIGNED_DRIVER})),
    TransitionRule(RideStatus.ACCEPTED, RideStatus.CANCELLED, _CANCEL_AFTER_ASSIGNMENT),
    TransitionRule(RideStatus.IN_PROGRESS, RideStatus.COMPLETED, frozenset({Party.ASSIGNED_DRIVER})),
    TransitionRule(RideStatus.IN_PROGRESS, RideStatus.CANCELLED, _CANCEL_AFTER_ASSIGNMENT),
)

_RULES: dict[tuple[RideStatus, RideStatus], TransitionRule] = {
    (rule.source, rule.target): rule for rule in TRANSITIONS
}

TERMINAL_STATUSES = frozenset(
    status for status in RideStatus
    if not any(rule.source == status for rule in TRANSITIONS)
)


def allowed_targets(current: RideStatus) -> frozenset[RideStatus]:
    """Статусы, в которые можно перейти из текущего."""
    return frozenset(rule.target for rule in TRANSITIONS if rule.source == current)


def find_rule(current: RideStatus, target: RideStatus) -> TransitionRule:
    """
    Raises:
        InvalidTransition: ребра нет в таблице (ответ содержит допустимые цели)
    """
    rule = _RULES.get((RideStatus(current), RideStatus(target)))
    if rule is None:
        raise InvalidTransition(current, target, allowed_targets(RideStatus(current)))
    return rule


def parties_of(ride: Ride, actor: Identity) -> frozenset[Party]:
    """Определяет все роли пользователя по отношению к поездке."""
    parties: set[Party] = set()
    match actor.role:
        case UserRole.DRIVER:
            parties.add(Party.ANY_DRIVER)
            if ride.driver_id is not None and ride.driver_id == actor.id:
                parties.add(Party.ASSIGNED_DRIVER)
        case UserRole.PATIENT:
            if ride.patient_id == actor.id:
                parties.add(Party.PATIENT)
        case UserRole.FACILITY:
            if ride.facility_id is not None and ride.facility_id == actor.id:
                parties.add(Party.BOOKING_FACILITY)
        case UserRole.ADMIN:
            parties.add(Party.ADMIN)
    return frozenset(parties)


def authorize(rule: TransitionRule, ride: Ride, actor: Identity) -> None:
    """
    Raises:
        AuthorizationError: пользователь не входит в число сторон, допущенных к переходу
    """
    if not parties_of(ride, actor) & rule.parties:
        raise AuthorizationError(
            f"Not allowed to move ride from '{rule.source}' to '{rule.target}'",
            {
                "ride_id": str(ride.id),
                "role": str(actor.role),
                "required": sorted(p.value for p in rule.parties),
            },
        )


@dataclass(frozen=True)
class TransitionPlan:
    """
    Что нужно записать в хранилище одним условным UPDATE.

    expected_status: статус, на который опирается условие WHERE
    changes: колонки и их новые значения (кроме status)
    """
    rule: TransitionRule
    expected_status: RideStatus
    target: RideStatus
    changes: dict[str, Any] = field(default_factory=dict)


def plan_transition(
    ride: Ride,
    target: RideStatus,
    actor: Identity,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> TransitionPlan:
    """
    Проверяет ребро и права, вычисляет отметки жизненного цикла.

    Raises:
        InvalidTransition: недопустимое ребро
        ClaimRequired: ребро проходит только через атомарный захват
        AuthorizationError: у пользователя нет прав на переход
    """
    rule = find_rule(ride.status, target)
    if rule.via_claim:
        raise ClaimRequired(ride.status, target, allowed_targets(ride.status))
    authorize(rule, ride, actor)

    moment = now or datetime.now(timezone.utc)
    changes: dict[str, Any] = {}
    match rule.target:
        case RideStatus.IN_PROGRESS:
            changes["start_time"] = moment
        case RideStatus.COMPLETED:
            changes["completed_by"] = actor.id
            changes["completed_at"] = moment
        case RideStatus.CANCELLED:
            changes["cancelled_by"] = actor.id
            changes["cancelled_at"] = moment
            changes["cancellation_reason"] = (reason or "").strip() or DEFAULT_CANCELLATION_REASON

    return TransitionPlan(rule=rule, expected_status=rule.source, target=rule.target, changes=changes)


def apply_transition(
    ride: Ride,
    target: RideStatus,
    actor: Identity,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Ride:
    """
    Возвращает копию поездки после перехода; исходный объект не меняется.
    В хранилище то же самое делает RideRepository.transition по TransitionPlan.
    """
    plan = plan_transition(ride, target, actor, reason=reason, now=now)
    return ride.model_copy(update={"status": plan.target, **plan.changes})
