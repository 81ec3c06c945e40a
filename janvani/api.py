"""Endpoint bindings over the gateway and the response cache.

Reads go through ``CacheStore.fetch`` (TTL + coalescing). Writes go straight
to the gateway and, once the server accepts them, drop only the cached paths
they could have changed (see :func:`invalidation_paths`).
"""

import re
from typing import Any, Dict, Iterable, Optional, Tuple

from .cache import CacheStore, make_signature
from .gateway import Gateway
from .models import Role

_ITEM_ACTION = re.compile(r"^/complaints/([^/?]+)/(status|resolve|support|feedback)$")
_ITEM = re.compile(r"^/complaints/([^/?]+)$")

LIST_PATHS = ("/complaints", "/complaints/stats")
PROFILE_PATHS = ("/users/me", "/auth/me", "/users/leaderboard", "/users")


def invalidation_paths(path: str, aliases: Iterable[str] = ()) -> Tuple[str, ...]:
    """Cached paths a successful write to *path* makes stale."""
    match = _ITEM_ACTION.match(path) or _ITEM.match(path)
    if match:
        refs = dict.fromkeys((match.group(1), *aliases))
        return tuple(f"/complaints/{ref}" for ref in refs) + LIST_PATHS
    if path == "/complaints":
        return LIST_PATHS
    if path.startswith("/users"):
        return PROFILE_PATHS
    if path.startswith("/auth"):
        return ("/auth/me",)
    return ()


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if v is not None}


class _Endpoints:
    def __init__(self, gateway: Gateway, cache: CacheStore):
        self.gateway = gateway
        self.cache = cache

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        signature = make_signature(path, params)
        return await self.cache.fetch(signature, lambda: self.gateway.send(path, "GET", params=params))

    async def mutate(self, path: str, method: str = "POST", body: Any = None, aliases: Iterable[str] = ()) -> Any:
        result = await self.gateway.send(path, method, body=body)
        self.cache.invalidate(*invalidation_paths(path, aliases))
        return result


class AuthAPI(_Endpoints):
    async def register(self, role: Role, payload: Dict[str, Any]) -> Any:
        return await self.gateway.send(f"/auth/{Role(role).value}/register", "POST", body=_compact(payload))

    async def login(self, role: Role, email: str, password: str) -> Any:
        return await self.gateway.send(f"/auth/{Role(role).value}/login", "POST",
                                       body={"email": email, "password": password})

    async def me(self) -> Any:
        return await self.get("/auth/me")

    async def forgot_password(self, email: str) -> Any:
        return await self.mutate("/auth/forgot-password", "POST", {"email": email})

    async def reset_password(self, email: str, new_password: str) -> Any:
        return await self.mutate("/auth/reset-password", "POST", {"email": email, "newPassword": new_password})


class ComplaintAPI(_Endpoints):
    async def list(self, **filters: Any) -> Any:
        """GET /complaints; filters: category, priority, status, ward, search, page, limit."""
        return await self.get("/complaints", _compact(filters) or None)

    async def get_one(self, ref: str) -> Any:
        return await self.get(f"/complaints/{ref}")

    async def stats(self) -> Any:
        return await self.get("/complaints/stats")

    async def create(self, draft: Dict[str, Any]) -> Any:
        return await self.mutate("/complaints", "POST", draft)

    async def update_status(self, ref: str, status: str, admin_note: Optional[str] = None,
                            assigned_officer: Optional[str] = None, aliases: Iterable[str] = ()) -> Any:
        body = _compact({"status": status, "adminNote": admin_note, "assignedOfficer": assigned_officer})
        return await self.mutate(f"/complaints/{ref}/status", "PATCH", body, aliases)

    async def resolve(self, ref: str, resolve_photo: str = "", admin_note: str = "", assigned_officer: str = "",
                      aliases: Iterable[str] = ()) -> Any:
        body = {"resolvePhoto": resolve_photo, "adminNote": admin_note, "assignedOfficer": assigned_officer}
        return await self.mutate(f"/complaints/{ref}/resolve", "PATCH", body, aliases)

    async def support(self, ref: str, aliases: Iterable[str] = ()) -> Any:
        return await self.mutate(f"/complaints/{ref}/support", "POST", None, aliases)

    async def feedback(self, ref: str, rating: int, comment: str, resolved: str, aliases: Iterable[str] = ()) -> Any:
        body = {"rating": rating, "comment": comment, "resolved": resolved}
        return await self.mutate(f"/complaints/{ref}/feedback", "POST", body, aliases)

    async def delete(self, ref: str, aliases: Iterable[str] = ()) -> Any:
        return await self.mutate(f"/complaints/{ref}", "DELETE", None, aliases)


class UserAPI(_Endpoints):
    async def leaderboard(self, ward: Optional[int] = None, citywide: bool = False, limit: Optional[int] = None) -> Any:
        params = _compact({"ward": ward, "global": "true" if citywide else None, "limit": limit})
        return await self.get("/users/leaderboard", params or None)

    async def profile(self) -> Any:
        return await self.get("/users/me")

    async def update_profile(self, changes: Dict[str, Any]) -> Any:
        return await self.mutate("/users/me", "PATCH", _compact(changes))

    async def change_password(self, current_password: str, new_password: str) -> Any:
        return await self.mutate("/users/me/password", "PATCH",
                                 {"currentPassword": current_password, "newPassword": new_password})

    async def citizens(self) -> Any:
        return await self.get("/users")


class Api:
    """The three endpoint groups sharing one gateway and one cache."""

    def __init__(self, gateway: Gateway, cache: CacheStore):
        self.auth = AuthAPI(gateway, cache)
        self.complaints = ComplaintAPI(gateway, cache)
        self.users = UserAPI(gateway, cache)
