"""Dashboard service - a user's own rewards and links"""
from typing import Dict

from app.models.user import User
from app.services.auth_service import serialize_user
from app.services.link_service import serialize_link
from app.services.reward_service import compute_level


def get_dashboard(user: User) -> Dict:
    """Return the caller's own record with reward progress and resolved links"""
    links = sorted(user.links, key=lambda link: link.id, reverse=True)
    return {
        "user": serialize_user(user),
        "xp": user.xp,
        "level": user.level,
        "entries": user.entries,
        "progress": compute_level(user.xp),
        "links": [serialize_link(link) for link in links],
        "total_clicks": sum(link.clicks for link in links),
    }
