"""Member roster - identities, payout order and running totals"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from tanda_ledger.domain.exceptions import InvalidPoolConfigError, NotFoundError
from tanda_ledger.domain.models import Member, MemberStatus, PaymentMethod, PayoutDestination


class MemberRoster:
    """Members of one pool, keyed by member_id, ordered by payout position"""

    def __init__(self, members: Iterable[Member] = ()):
        self._members: Dict[str, Member] = {}
        for member in members:
            self._insert(member)

    @classmethod
    def from_snapshot(cls, entries: Iterable[Mapping[str, Any]]) -> "MemberRoster":
        """
        Build a roster from the collaborator snapshot shape:
        {member_id, position, status?, payout_destination?: {method, handle}}
        """
        members = []
        for entry in entries:
            try:
                destination = entry.get("payout_destination")
                members.append(
                    Member(
                        member_id=str(entry["member_id"]),
                        position=int(entry["position"]),
                        status=MemberStatus(entry.get("status", MemberStatus.ACTIVE)),
                        payout_destination=(
                            PayoutDestination(
                                method=PaymentMethod(destination["method"]),
                                handle=destination["handle"],
                                display_name=destination.get("display_name"),
                            )
                            if destination
                            else None
                        ),
                    )
                )
            except (KeyError, ValueError, TypeError) as e:
                raise InvalidPoolConfigError(f"Invalid roster entry {entry!r}: {e}") from e
        return cls(members)

    def _insert(self, member: Member) -> None:
        if member.member_id in self._members:
            raise InvalidPoolConfigError(f"Duplicate member id {member.member_id}")
        if member.position < 1:
            raise InvalidPoolConfigError(f"Member {member.member_id} has invalid position {member.position}")
        if any(m.position == member.position for m in self._members.values()):
            raise InvalidPoolConfigError(f"Position {member.position} is already taken")
        self._members[member.member_id] = member

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self):
        return iter(self.members())

    def __contains__(self, member_id: object) -> bool:
        return member_id in self._members

    def members(self) -> List[Member]:
        return sorted(self._members.values(), key=lambda m: m.position)

    def active_members(self) -> List[Member]:
        return [m for m in self.members() if m.is_active]

    def get(self, member_id: str) -> Member:
        try:
            return self._members[member_id]
        except KeyError:
            raise NotFoundError(f"Member {member_id} not found") from None

    def at_position(self, position: int) -> Optional[Member]:
        for member in self._members.values():
            if member.position == position:
                return member
        return None

    def designated_recipient(self, round_number: int) -> Member:
        """Member whose position matches the round"""
        member = self.at_position(round_number)
        if member is None:
            raise NotFoundError(f"No member holds position {round_number}")
        return member

    # Mid-pool membership changes

    def add(self, member: Member) -> None:
        self._insert(member)

    def deactivate(self, member_id: str) -> Member:
        member = self.get(member_id)
        member.status = MemberStatus.INACTIVE
        return member

    # Aggregates

    def credit_contribution(self, member_id: str, amount_cents: int, on_time: bool) -> None:
        member = self.get(member_id)
        member.total_contributed_cents += amount_cents
        if on_time:
            member.payments_on_time += 1

    def record_missed(self, member_id: str) -> None:
        self.get(member_id).payments_missed += 1

    def record_payout(self, member_id: str, amount_cents: int, paid_at: datetime) -> None:
        member = self.get(member_id)
        member.payout_received = True
        member.payout_date = paid_at
        member.total_received_cents += amount_cents
