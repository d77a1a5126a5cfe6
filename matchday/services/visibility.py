"""
Visibility filter: what a caller may see of a match.
Private matches keep their times but hide where and who for non-admins.
"""
from __future__ import annotations

import dataclasses

from matchday.models import Match, MatchView

PRIVATE_LOCATION = "Private location"
HIDDEN_FIELDS = ("rented_by_name", "rented_by_player_id", "description")

_MATCH_TYPE_LABELS = {
    "friendly": "Friendly",
    "training": "Training",
    "tournament": "Tournament",
}


def redact_match(match: Match, is_admin: bool) -> MatchView:
    if not match.is_private or is_admin:
        return MatchView(match=match)
    redacted = dataclasses.replace(
        match,
        location=PRIVATE_LOCATION,
        rented_by_name=None,
        rented_by_player_id=None,
        description=None,
    )
    return MatchView(match=redacted, redacted=True, hidden_fields=list(HIDDEN_FIELDS))


def build_preview(match: Match, is_admin: bool, signup_count: int) -> dict[str, str]:
    """Title and description for link previews. Only redacted data goes in."""
    view = redact_match(match, is_admin).match
    kind = _MATCH_TYPE_LABELS.get(view.match_type, view.match_type.title())
    when = view.starts_at.strftime("%a %d %b %Y, %H:%M UTC")
    title = f"{kind} match - {when}"
    parts = [view.location or PRIVATE_LOCATION, f"{signup_count}/{view.capacity} players"]
    if view.cost_per_player is not None:
        parts.append(f"{view.cost_per_player:.2f} per player")
    spots = max(view.capacity - signup_count, 0)
    parts.append("Full" if spots == 0 else f"{spots} spots left")
    return {"title": title, "description": " · ".join(parts)}
