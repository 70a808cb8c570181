"""Filter cascade controller.

Owns the draft filter value and the per-level option lists. Editing an
ancestor level resets every descendant (field and option list) before the
child options are fetched; each fetch is tagged with the parent chain it was
issued for and a per-list generation, and its result is dropped if either
changed meanwhile. Only ``commit()`` publishes, and it publishes one
immutable snapshot.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from discom_dashboard.core.concurrency import Generation, settle
from discom_dashboard.core.config import settings
from discom_dashboard.core.errors import HierarchyViolation
from discom_dashboard.schemas.filters import (
    HIERARCHY,
    WIRE_NAMES,
    FilterDraft,
    FilterLevel,
    FilterSnapshot,
    FilterStateOut,
    OptionSets,
)
from discom_dashboard.services.api_client import DashboardApiClient

SnapshotSubscriber = Callable[[FilterSnapshot], Any]

# Option list populated once a level is chosen.
CHILD_OPTIONS: Dict[FilterLevel, str] = {
    FilterLevel.DISCOM: "regions",
    FilterLevel.REGION: "feeders",
    FilterLevel.FEEDER: "dtus",
}

# Option list -> the levels whose values scope it.
OPTION_PARENTS: Dict[str, Tuple[FilterLevel, ...]] = {
    "discoms": (),
    "regions": (FilterLevel.DISCOM,),
    "feeders": (FilterLevel.DISCOM, FilterLevel.REGION),
    "dtus": (FilterLevel.DISCOM, FilterLevel.REGION, FilterLevel.FEEDER),
}

# Option list owned by each level (the list its value is picked from).
LEVEL_OPTIONS: Dict[FilterLevel, str] = {
    FilterLevel.DISCOM: "discoms",
    FilterLevel.REGION: "regions",
    FilterLevel.FEEDER: "feeders",
    FilterLevel.DTU: "dtus",
}


def _coerce(level: FilterLevel, value: Union[str, date, None]):
    if value is None:
        return None
    if level in (FilterLevel.START_DATE, FilterLevel.END_DATE):
        if isinstance(value, date):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"{level.value} must be an ISO date (YYYY-MM-DD)") from exc
    text = str(value).strip()
    return text or None


class FilterCascadeController:
    def __init__(
        self,
        client: DashboardApiClient,
        *,
        today: Callable[[], date] = date.today,
        options_timeout: Optional[float] = None,
    ):
        self._client = client
        self._today = today
        self._timeout = options_timeout or settings.FILTER_OPTIONS_TIMEOUT_SEC
        self._draft = FilterDraft()
        self._options = OptionSets()
        self._loading: Dict[str, bool] = {kind: False for kind in OPTION_PARENTS}
        self._generations: Dict[str, Generation] = {kind: Generation() for kind in OPTION_PARENTS}
        self._committed: Optional[FilterSnapshot] = None
        self._subscribers: List[SnapshotSubscriber] = []

    @property
    def draft(self) -> FilterDraft:
        return self._draft

    @property
    def options(self) -> OptionSets:
        return self._options

    @property
    def loading(self) -> Dict[str, bool]:
        return dict(self._loading)

    @property
    def committed(self) -> Optional[FilterSnapshot]:
        return self._committed

    def state(self) -> FilterStateOut:
        return FilterStateOut(
            draft=self._draft,
            options=self._options,
            loading=self.loading,
            committed=self._committed,
        )

    def subscribe(self, callback: SnapshotSubscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def mount(self, restored: Optional[FilterSnapshot] = None) -> Optional[FilterSnapshot]:
        """Apply the default date range (or a restored snapshot), broadcast it,
        then load the DISCOM list and the option list under every chosen level."""
        if restored is not None:
            self._draft = FilterDraft.model_validate(restored.model_dump())
        else:
            self._draft = FilterDraft(
                start_date=settings.DEFAULT_START_DATE,
                end_date=self._today(),
            )
        snapshot = self.commit()
        await self._refresh_options("discoms")
        for level, kind in CHILD_OPTIONS.items():
            if self._draft.value_of(level) is None:
                break
            await self._refresh_options(kind)
        return snapshot

    async def set_field(self, level: FilterLevel, value: Union[str, date, None]) -> None:
        level = FilterLevel(level)
        new_value = _coerce(level, value)
        if self._draft.value_of(level) == new_value:
            return

        if level in HIERARCHY:
            position = HIERARCHY.index(level)
            parent = HIERARCHY[position - 1] if position else None
            if new_value is not None and parent is not None and self._draft.value_of(parent) is None:
                raise HierarchyViolation(f"{level.value} requires {parent.value} to be selected first")

            # Descendant resets land before any child fetch is issued.
            update: Dict[str, Any] = {level.value: new_value}
            cleared: Dict[str, List[str]] = {}
            for descendant in HIERARCHY[position + 1:]:
                update[descendant.value] = None
                cleared[LEVEL_OPTIONS[descendant]] = []
                self._loading[LEVEL_OPTIONS[descendant]] = False
            self._draft = self._draft.model_copy(update=update)
            if cleared:
                self._options = self._options.model_copy(update=cleared)
            logger.bind(level=level.value, value=new_value, reset=list(cleared)).info(
                "filter_field_set"
            )

            if new_value is not None and level in CHILD_OPTIONS:
                await self._refresh_options(CHILD_OPTIONS[level])
            return

        self._draft = self._draft.model_copy(update={level.value: new_value})
        logger.bind(level=level.value, value=str(new_value)).info("filter_field_set")

    def commit(self) -> Optional[FilterSnapshot]:
        """Freeze the draft and broadcast it; a no-op while a date is missing."""
        if not self._draft.has_dates:
            logger.info("filter_commit_skipped_missing_dates")
            return None
        try:
            snapshot = FilterSnapshot.model_validate(self._draft.model_dump())
        except ValidationError as exc:
            logger.bind(errors=exc.errors(include_url=False)).warning("filter_commit_rejected")
            return None

        self._committed = snapshot
        logger.bind(filters=snapshot.to_query_params()).info("filter_committed")
        for callback in list(self._subscribers):
            callback(snapshot)
        return snapshot

    def _parent_chain(self, kind: str) -> Tuple[Optional[str], ...]:
        return tuple(self._draft.value_of(level) for level in OPTION_PARENTS[kind])

    async def _refresh_options(self, kind: str) -> None:
        tag = self._parent_chain(kind)
        token = self._generations[kind].advance()
        params = {
            WIRE_NAMES[level]: value
            for level, value in zip(OPTION_PARENTS[kind], tag)
        }
        self._loading[kind] = True
        outcome = await settle(
            lambda: self._client.get_filter_options(kind, params),
            timeout=self._timeout,
            label=f"options:{kind}",
        )

        if self._parent_chain(kind) != tag or not self._generations[kind].is_current(token):
            logger.bind(kind=kind, issued_for=list(tag)).info("filter_options_discarded")
            return

        self._loading[kind] = False
        if outcome.ok:
            self._options = self._options.model_copy(update={kind: list(outcome.value or [])})
        else:
            logger.bind(kind=kind, error=outcome.error.message).warning("filter_options_failed")
