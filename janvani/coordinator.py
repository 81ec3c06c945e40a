"""Session and entity coordinator.

Owns the one mutable cell of the client: an immutable ``CoordinatorState``
that is replaced wholesale on every change and pushed to subscribers together
with freshly derived views. Everything runs on one asyncio loop, so there are
no locks; ordering comes from doing the local apply before the first await
and the reconcile/rollback before the caller's await returns.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from . import config
from .api import Api
from .cache import CacheStore
from .errors import AuthenticationError, JanvaniError, ServerError, ValidationError
from .gateway import Gateway
from .models import (
    POINTS_FOR_FEEDBACK,
    POINTS_FOR_SUBMISSION,
    Feedback,
    Role,
    Session,
    Status,
    UserProfile,
    WorkItem,
    WorkItemDraft,
)
from .store import COMPLAINTS_KEY, LEADERBOARD_KEY, ROSTER_KEY, TOKEN_KEY, USER_KEY, LocalStore
from .views import DerivedViews, derive

logger = logging.getLogger(__name__)

Items = Tuple[WorkItem, ...]


@dataclass(frozen=True)
class CoordinatorState:
    session: Optional[Session] = None
    work_items: Items = ()
    roster: Tuple[UserProfile, ...] = ()
    leaderboard: Tuple[UserProfile, ...] = ()


Listener = Callable[[CoordinatorState, DerivedViews], None]


@dataclass(eq=False)
class _Pending:
    # Local version of an item whose mutation is in flight; None means deleted
    item: Optional[WorkItem]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _field(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


def _find(items: Iterable[WorkItem], ref: str) -> Optional[WorkItem]:
    return next((item for item in items if item.matches(ref)), None)


def _replace(items: Items, ref: str, change: Callable[[WorkItem], WorkItem]) -> Items:
    return tuple(change(item) if item.matches(ref) else item for item in items)


def _parse_all(model, rows: Iterable[Any]) -> tuple:
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except SchemaError as e:
            logger.warning("Skipping malformed %s record: %s", model.__name__, e.errors()[0]["msg"])
    return tuple(parsed)


def _dump(records: Iterable[Any]) -> List[dict]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]


def _first_error(e: SchemaError) -> str:
    error = e.errors()[0]
    where = ".".join(str(part) for part in error.get("loc", ()))
    return f"{where}: {error['msg']}" if where else error["msg"]


def _address(item: Optional[WorkItem], ref: str) -> Tuple[str, Tuple[str, ...]]:
    """Storage id to call the server with, plus the other id for cache invalidation."""
    if item is None:
        return ref, ()
    storage_id = item.storage_id or ref
    return storage_id, tuple(sorted(item.identities - {storage_id}))


def _coerce_status(status: Any) -> Status:
    try:
        return Status(status)
    except ValueError:
        raise ValidationError(f"Unknown status {status!r}") from None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------
class Coordinator:
    def __init__(self, gateway: Optional[Gateway] = None, cache: Optional[CacheStore] = None,
                 store: Optional[LocalStore] = None, poll_interval: float = config.POLL_INTERVAL,
                 snapshot_max_age: float = config.SNAPSHOT_MAX_AGE,
                 clock: Callable[[], datetime] = config.now_utc):
        self.gateway = gateway if gateway is not None else Gateway()
        self.cache = cache if cache is not None else CacheStore()
        self.store = store if store is not None else LocalStore()
        self.api = Api(self.gateway, self.cache)
        self.poll_interval = poll_interval
        self.snapshot_max_age = snapshot_max_age
        self._clock = clock

        self._state = CoordinatorState()
        self._views = derive(None, (), clock().date())
        self._listeners: List[Listener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._flights: Dict[Hashable, asyncio.Task] = {}
        self._pending: Dict[str, _Pending] = {}
        # Bumped whenever the identity changes; results started under an older epoch are dropped
        self._epoch = 0

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def views(self) -> DerivedViews:
        return self._views

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def aclose(self) -> None:
        self.stop_polling()
        await self.gateway.aclose()

    # -- publishing ---------------------------------------------------------
    def _publish(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        self._views = derive(self._state.session, self._state.work_items, self._clock().date())
        for listener in list(self._listeners):
            try:
                listener(self._state, self._views)
            except Exception as e:
                logger.error("State listener failed: %s", e)

    def _set_session(self, session: Session) -> None:
        self._publish(session=session)
        self.store.write(USER_KEY, session.model_dump(mode="json", by_alias=True))

    def _set_work_items(self, items: Items, persist: bool = True) -> None:
        self._publish(work_items=tuple(items))
        if persist:
            self.store.write(COMPLAINTS_KEY, _dump(items))

    def _update_item(self, ref: str, change: Callable[[WorkItem], WorkItem]) -> None:
        if _find(self._state.work_items, ref) is not None:
            self._set_work_items(_replace(self._state.work_items, ref, change))

    def _parse_item(self, payload: Any) -> Optional[WorkItem]:
        data = _field(payload, "complaint")
        if not isinstance(data, dict):
            return None
        try:
            return WorkItem.model_validate(data)
        except SchemaError as e:
            logger.warning("Malformed complaint in response: %s", _first_error(e))
            return None

    def _reconcile_item(self, items: Items, payload: Any) -> Items:
        server = self._parse_item(payload)
        if server is None:
            return items
        return tuple(server if item.identities & server.identities else item for item in items)

    async def _single_flight(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        task = self._flights.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run_flight(key, fetch))
            self._flights[key] = task
        return await asyncio.shield(task)

    async def _run_flight(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        me = asyncio.current_task()
        try:
            return await fetch()
        finally:
            # a session switch may already have replaced this registration
            if self._flights.get(key) is me:
                del self._flights[key]

    # -- session lifecycle --------------------------------------------------
    async def login(self, email: str, password: str, role: Role = Role.CITIZEN) -> Session:
        return await self._authenticate(self.api.auth.login(Role(role), email, password), "Login failed")

    async def register(self, payload: Dict[str, Any]) -> Session:
        payload = dict(payload)
        role = Role(payload.pop("role", Role.CITIZEN))
        return await self._authenticate(self.api.auth.register(role, payload), "Registration failed")

    async def _authenticate(self, request: Awaitable[Any], failure: str) -> Session:
        self._forget_cached_data()
        self.stop_polling()
        try:
            result = await request
            return await self._start_session(result, failure)
        except Exception:
            if self._state.session is not None:
                self.start_polling()
            raise

    def _forget_cached_data(self) -> None:
        self.cache.clear()
        self.store.remove(COMPLAINTS_KEY)

    async def _start_session(self, result: Any, failure: str) -> Session:
        token = _field(result, "token")
        if not token:
            raise AuthenticationError(f"{failure}: no token in response")
        try:
            session = Session.model_validate(_field(result, "user") or {})
        except SchemaError as e:
            raise AuthenticationError(f"{failure}: {_first_error(e)}") from e

        self.stop_polling()
        previous = self._state.session
        self._epoch += 1
        self._pending.clear()
        self.gateway.token = token
        self.store.write(TOKEN_KEY, token)
        # anything fetched or still in flight under the previous token is unusable now
        self.cache.clear()
        self._flights.clear()
        if previous is None or not previous.identities & session.identities:
            self._publish(work_items=(), roster=(), leaderboard=())
        self._set_session(session)
        logger.info("Signed in as %s (%s)", session.email, session.role.value)

        await self._load_working_set()
        self.start_polling()
        return session

    def logout(self) -> None:
        self.stop_polling()
        self._epoch += 1
        self._pending.clear()
        self.cache.clear()
        self.gateway.token = None
        for key in (TOKEN_KEY, USER_KEY, COMPLAINTS_KEY, ROSTER_KEY, LEADERBOARD_KEY):
            self.store.remove(key)
        self._publish(session=None, work_items=(), roster=(), leaderboard=())

    def restore_session(self) -> Optional[asyncio.Task]:
        """Publish the cached session right away, then revalidate it in the background.

        Returns the revalidation task, or None when nothing usable was cached.
        """
        loop = asyncio.get_running_loop()
        raw = self.store.read(USER_KEY)
        token = self.store.read(TOKEN_KEY)
        if not raw or not token:
            return None
        try:
            session = Session.model_validate(raw)
        except SchemaError as e:
            logger.debug("Cached session is unusable: %s", _first_error(e))
            self.store.remove(USER_KEY)
            return None

        self._epoch += 1
        self.gateway.token = token
        self._publish(
            session=session,
            work_items=_parse_all(WorkItem, self._snapshot(COMPLAINTS_KEY)),
            roster=_parse_all(UserProfile, self._snapshot(ROSTER_KEY)),
            leaderboard=_parse_all(UserProfile, self._snapshot(LEADERBOARD_KEY)),
        )
        return loop.create_task(self._revalidate(self._epoch))

    def _snapshot(self, key: str) -> list:
        rows = self.store.read(key, self.snapshot_max_age)
        return rows if isinstance(rows, list) else []

    async def _revalidate(self, epoch: int) -> Optional[Session]:
        try:
            result = await self.api.auth.me()
            session = Session.model_validate(_field(result, "user") or {})
        except AuthenticationError as e:
            if epoch == self._epoch:
                logger.warning("Stored session was rejected, signing out: %s", e)
                self.logout()
            return None
        except (JanvaniError, SchemaError) as e:
            logger.warning("Could not revalidate stored session, keeping it: %s", e)
            if epoch == self._epoch:
                self.start_polling()
            return self._state.session

        if epoch != self._epoch:
            return self._state.session
        if session.role is not self._state.session.role or not session.identities & self._state.session.identities:
            logger.warning("Stored session does not match the server's, signing out")
            self.logout()
            return None
        self._set_session(session)
        self.start_polling()
        await self._load_working_set()
        return session

    async def _load_working_set(self) -> None:
        await self.load_work_items()
        session = self._state.session
        if session is not None and session.is_admin:
            await self.load_roster()

    # -- polling ------------------------------------------------------------
    def start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            if self._state.session is None:
                continue
            try:
                await self._load_working_set()
            except Exception as e:
                logger.error("Poll tick failed: %s", e)

    # -- loads --------------------------------------------------------------
    async def load_work_items(self) -> Items:
        return await self._single_flight("work_items", self._fetch_work_items)

    async def refresh_work_items(self) -> Items:
        self.cache.invalidate("/complaints")
        return await self.load_work_items()

    async def _fetch_work_items(self) -> Items:
        if self._state.session is None:
            return self._state.work_items
        epoch = self._epoch
        try:
            result = await self.api.complaints.list()
        except JanvaniError as e:
            logger.warning("Failed loading complaints: %s", e)
            return self._state.work_items
        rows = _field(result, "complaints")
        if not isinstance(rows, list) or epoch != self._epoch:
            return self._state.work_items
        items = self._overlay_pending(_parse_all(WorkItem, rows))
        self._set_work_items(items)
        return items

    def _overlay_pending(self, fetched: Items) -> Items:
        if not self._pending:
            return fetched
        merged = []
        for item in fetched:
            pending = next((p for key, p in self._pending.items() if key in item.identities), None)
            if pending is None:
                merged.append(item)
            elif pending.item is not None:
                merged.append(pending.item)
        return tuple(merged)

    async def load_roster(self) -> Tuple[UserProfile, ...]:
        return await self._single_flight("roster", self._fetch_roster)

    async def _fetch_roster(self) -> Tuple[UserProfile, ...]:
        session = self._state.session
        if session is None or not session.is_admin:
            return self._state.roster
        epoch = self._epoch
        try:
            result = await self.api.users.citizens()
        except JanvaniError as e:
            logger.warning("Failed loading citizens: %s", e)
            return self._state.roster
        rows = _field(result, "users")
        if not isinstance(rows, list) or epoch != self._epoch:
            return self._state.roster
        roster = _parse_all(UserProfile, rows)
        self._publish(roster=roster)
        self.store.write(ROSTER_KEY, _dump(roster))
        return roster

    async def load_leaderboard(self, ward: Optional[int] = None, global_: bool = False,
                               limit: Optional[int] = None) -> Tuple[UserProfile, ...]:
        epoch = self._epoch
        try:
            result = await self.api.users.leaderboard(ward=ward, citywide=global_, limit=limit)
        except JanvaniError as e:
            logger.warning("Failed loading leaderboard: %s", e)
            return self._state.leaderboard
        rows = _field(result, "leaderboard")
        if not isinstance(rows, list) or epoch != self._epoch:
            return self._state.leaderboard
        board = _parse_all(UserProfile, rows)
        self._publish(leaderboard=board)
        self.store.write(LEADERBOARD_KEY, _dump(board))
        return board

    async def get_work_item(self, ref: str) -> WorkItem:
        epoch = self._epoch
        item = self._parse_item(await self.api.complaints.get_one(ref))
        if item is None:
            raise ServerError(f"Malformed response for complaint {ref}")
        if epoch == self._epoch and _find(self._state.work_items, ref) is not None:
            self._set_work_items(tuple(item if i.matches(ref) else i for i in self._state.work_items))
        return item

    async def get_stats(self) -> Dict[str, Any]:
        return _field(await self.api.complaints.stats(), "stats") or {}

    # -- mutations ----------------------------------------------------------
    async def with_optimistic_mutation(self, apply: Callable[[Items], Items], call: Callable[[], Awaitable[Any]],
                                       reconcile: Callable[[Items, Any], Items], key: Optional[str] = None) -> Any:
        """Apply locally, call the server, then reconcile; on any failure restore the snapshot and re-raise.

        While the call is in flight, polled lists keep the local version of the item under *key*.
        """
        snapshot = self._state.work_items
        epoch = self._epoch
        optimistic = apply(snapshot)
        marker = None
        if key is not None:
            marker = self._pending[key] = _Pending(_find(optimistic, key))
        self._set_work_items(optimistic, persist=False)
        try:
            result = await call()
        except (Exception, asyncio.CancelledError):
            self._settle(key, marker)
            if epoch == self._epoch:
                # whole-collection restore: poll results or other reconciles that landed meanwhile are dropped too
                self._set_work_items(snapshot, persist=False)
            raise
        self._settle(key, marker)
        if epoch == self._epoch:
            self._set_work_items(reconcile(self._state.work_items, result))
        return result

    def _settle(self, key: Optional[str], marker: Optional[_Pending]) -> None:
        if key is not None and self._pending.get(key) is marker:
            del self._pending[key]

    async def create_work_item(self, draft: Any) -> WorkItem:
        if not isinstance(draft, WorkItemDraft):
            try:
                draft = WorkItemDraft.model_validate(draft)
            except SchemaError as e:
                raise ValidationError(_first_error(e)) from e
        epoch = self._epoch
        result = await self.api.complaints.create(draft.model_dump(mode="json", by_alias=True, exclude_none=True))
        item = self._parse_item(result)
        if item is None:
            raise ServerError("Complaint was created but the response did not include it")
        if epoch == self._epoch:
            rest = tuple(i for i in self._state.work_items if not i.identities & item.identities)
            self._set_work_items((item,) + rest)
            session = self._state.session
            if session is not None and not session.is_admin:
                self._set_session(session.awarded(POINTS_FOR_SUBMISSION, complaints_submitted=1))
        return item

    async def update_work_item_status(self, ref: str, status: Any, note: Optional[str] = None,
                                      officer: Optional[str] = None) -> Optional[WorkItem]:
        status = _coerce_status(status)
        item = _find(self._state.work_items, ref)
        storage_id, aliases = _address(item, ref)
        now = self._clock()
        result = await self.with_optimistic_mutation(
            lambda items: _replace(items, ref, lambda it: it.advanced_to(status, note, officer, now=now)),
            lambda: self.api.complaints.update_status(storage_id, status.value, note, officer, aliases=aliases),
            self._reconcile_item,
            key=item.key if item else None,
        )
        return _find(self._state.work_items, ref) or self._parse_item(result)

    async def resolve_work_item(self, ref: str, photo: str = "", note: str = "",
                                officer: str = "") -> Optional[WorkItem]:
        item = _find(self._state.work_items, ref)
        storage_id, aliases = _address(item, ref)
        now = self._clock()
        result = await self.with_optimistic_mutation(
            lambda items: _replace(items, ref, lambda it: it.resolved(photo, note, officer, now=now)),
            lambda: self.api.complaints.resolve(storage_id, photo, note, officer, aliases=aliases),
            self._reconcile_item,
            key=item.key if item else None,
        )
        return _find(self._state.work_items, ref) or self._parse_item(result)

    async def delete_work_item(self, ref: str) -> None:
        item = _find(self._state.work_items, ref)
        storage_id, aliases = _address(item, ref)
        await self.with_optimistic_mutation(
            lambda items: tuple(i for i in items if not i.matches(ref)),
            lambda: self.api.complaints.delete(storage_id, aliases=aliases),
            lambda items, _: items,
            key=item.key if item else None,
        )

    async def support_work_item(self, ref: str) -> int:
        """Support an item once; concurrent calls for the same item share one request."""
        item = _find(self._state.work_items, ref)
        return await self._single_flight(("support", item.key if item else ref), lambda: self._support(ref))

    async def _support(self, ref: str) -> int:
        item = _find(self._state.work_items, ref)
        storage_id, aliases = _address(item, ref)
        session = self._state.session
        supporter = (session.storage_id or session.public_id) if session else None
        added = item is not None and supporter is not None and supporter not in item.supported_by
        epoch = self._epoch

        self._update_item(ref, lambda it: it.supported(supporter if added else None, 1))
        try:
            result = await self.api.complaints.support(storage_id, aliases=aliases)
        except (Exception, asyncio.CancelledError):
            if epoch == self._epoch:
                self._update_item(ref, lambda it: it.supported(supporter if added else None, -1))
            raise

        count = _field(result, "supportCount")
        if isinstance(count, int) and epoch == self._epoch:
            self._update_item(ref, lambda it: it.model_copy(update={"support_count": count}))
        if isinstance(count, int):
            return count
        current = _find(self._state.work_items, ref)
        return current.support_count if current else 0

    async def submit_feedback(self, ref: str, feedback: Any) -> WorkItem:
        if not isinstance(feedback, Feedback):
            try:
                feedback = Feedback.model_validate(feedback)
            except SchemaError as e:
                raise ValidationError(_first_error(e)) from e
        item = _find(self._state.work_items, ref) or await self.get_work_item(ref)
        if item.status is not Status.RESOLVED:
            raise ValidationError("Can only rate resolved complaints")
        if item.feedback is not None:
            raise ValidationError("Already submitted feedback")

        storage_id, aliases = _address(item, ref)
        epoch = self._epoch
        result = await self.api.complaints.feedback(storage_id, feedback.rating, feedback.comment,
                                                    feedback.resolved.value, aliases=aliases)
        if epoch == self._epoch:
            self._set_work_items(self._reconcile_item(self._state.work_items, result))
            session = self._state.session
            if session is not None:
                self._set_session(session.awarded(POINTS_FOR_FEEDBACK))
        return self._parse_item(result) or item.model_copy(update={"feedback": feedback})

    # -- account ------------------------------------------------------------
    async def update_profile(self, changes: Dict[str, Any]) -> Session:
        epoch = self._epoch
        result = await self.api.users.update_profile(changes)
        try:
            session = Session.model_validate(_field(result, "user") or {})
        except SchemaError as e:
            raise ServerError(f"Malformed profile in response: {_first_error(e)}") from e
        if epoch == self._epoch:
            self._set_session(session)
        return session

    async def change_password(self, current_password: str, new_password: str) -> Any:
        return await self.api.users.change_password(current_password, new_password)

    async def forgot_password(self, email: str) -> Any:
        return await self.api.auth.forgot_password(email)

    async def reset_password(self, email: str, new_password: str) -> Any:
        return await self.api.auth.reset_password(email, new_password)
