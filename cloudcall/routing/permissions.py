"""
Permission gate for operating an owned phone number.
"""

from ..directory import User
from .config import PhoneNumber


def can_use_number(user: User, number: PhoneNumber) -> bool:
    """
    May ``user`` place calls or send messages from ``number``.

    Allowed when the number is assigned to the user, to one of the user's
    teams, or when the user belongs to the organization owning it.
    """
    if not user.active:
        return False

    if number.assigned_user_id and number.assigned_user_id == user.id:
        return True

    if number.assigned_team_id and number.assigned_team_id in user.team_ids:
        return True

    return bool(number.org_id) and number.org_id == user.org_id
