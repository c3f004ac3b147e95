"""
cascade/session.py
------------------
Client-side state machine for one cascading field instance.

    IDLE             no parent value chosen; nothing revealed
    PARENT_SELECTED  parent chosen, its config is loading or reveals nothing
    FIELDS_REVEALED  at least one dependent field is visible

Every change goes through apply_selection(), so the visible set and the
surviving selections are recomputed from scratch; choosing a new parent
value throws away everything below it.

Responses can arrive in any order. Each load takes a fresh token for its
field and the result is applied only while that token is still the field's
current one, the field is still visible, and the session is open. Load
failures are stored on the field (FieldState.error); the rest of the form
keeps working.

    session = CascadeSession(loader, payment_directory_id, payment_type_field_id)
    await session.select_parent(buying_raw_material_id)
    await session.select("inventory", "electronics")
    session.fields["raw_material"].options   # circuits, sensors
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from erp_directory.cascade.loaders import OptionLoader, OptionLoadError
from erp_directory.core.config import settings
from erp_directory.core.logging import get_logger
from erp_directory.domain.field_types import is_blank
from erp_directory.domain.metadata import CascadingConfig, DependentField
from erp_directory.services.cascade_engine import (
    apply_selection,
    check_required,
    visible_fields,
)
from erp_directory.services.relation_resolver import Option

logger = get_logger(__name__)

_PARENT = object()


class CascadeState(str, Enum):
    idle = "idle"
    parent_selected = "parent_selected"
    fields_revealed = "fields_revealed"


@dataclass
class FieldState:
    dependent: DependentField
    parent_value: Optional[str] = None
    options: List[Option] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None
    search: str = ""


class CascadeSession:
    def __init__(
        self,
        loader: OptionLoader,
        directory_id: str,
        field_id: str,
        debounce_ms: Optional[int] = None,
        min_search_length: Optional[int] = None,
    ) -> None:
        self.loader = loader
        self.directory_id = directory_id
        self.field_id = field_id
        self.debounce_ms = settings.SEARCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.min_search_length = (
            settings.SEARCH_MIN_LENGTH if min_search_length is None else min_search_length
        )

        self.state = CascadeState.idle
        self.parent: Optional[str] = None
        self.config = CascadingConfig.disabled()
        self.config_error: Optional[str] = None
        self.selections: Dict[str, Any] = {}
        self.fields: Dict[str, FieldState] = {}

        self._counter = itertools.count(1)
        self._tokens: Dict[Any, int] = {}
        self._searches: Dict[str, asyncio.Task] = {}
        self._closed = False

    # ── Tokens ───────────────────────────────────────────────────────────────

    def _issue(self, key: Any) -> int:
        token = next(self._counter)
        self._tokens[key] = token
        return token

    def _is_current(self, key: Any, token: int) -> bool:
        return not self._closed and self._tokens.get(key) == token

    # ── Transitions ──────────────────────────────────────────────────────────

    async def select_parent(self, record_id: Optional[str]) -> None:
        """Choose (or clear) the parent value and reveal its dependent fields."""
        self._ensure_open()
        self._cancel_searches()
        self._tokens.clear()
        self.parent = None if is_blank(record_id) else record_id
        self.config = CascadingConfig.disabled()
        self.config_error = None
        self.selections = {}
        self.fields = {}
        if self.parent is None:
            self.state = CascadeState.idle
            return

        self.state = CascadeState.parent_selected
        token = self._issue(_PARENT)
        try:
            config = await self.loader.load_config(self.directory_id, self.field_id, self.parent)
        except OptionLoadError as exc:
            if self._is_current(_PARENT, token):
                self.config_error = str(exc)
            return
        if not self._is_current(_PARENT, token):
            logger.debug("Discarding stale cascading config", record_id=record_id)
            return
        self.config = config
        await self._refresh()

    async def select(self, field_name: str, value: Any) -> None:
        """Choose a value for a visible dependent field; blank clears it."""
        self._ensure_open()
        if field_name not in self.fields:
            raise ValueError(f"Field '{field_name}' is not visible")
        self.selections = apply_selection(self.config, self.selections, field_name, value)
        await self._refresh()

    async def clear(self, field_name: str) -> None:
        await self.select(field_name, None)

    def visible_fields(self) -> List[DependentField]:
        return visible_fields(self.config, self.selections)

    def validate(self) -> None:
        """Raises FieldRequired for visible required fields left empty."""
        check_required(self.config, self.selections)

    def errors(self) -> Dict[str, str]:
        return {name: state.error for name, state in self.fields.items() if state.error}

    async def _refresh(self) -> None:
        visible = self.visible_fields()
        names = {d.field_name for d in visible}
        for name in list(self.fields):
            if name not in names:
                del self.fields[name]
                self._tokens.pop(name, None)
                self._cancel_search(name)

        if visible:
            self.state = CascadeState.fields_revealed
        else:
            self.state = CascadeState.parent_selected if self.parent else CascadeState.idle

        loads = []
        for dependent in visible:
            parent_value = None
            if dependent.depends_on is not None:
                parent_value = str(self.selections[dependent.depends_on])
            current = self.fields.get(dependent.field_name)
            if current is None or current.parent_value != parent_value:
                # A search typed for the old parent value must not reach the new list
                self._cancel_search(dependent.field_name)
                self.fields[dependent.field_name] = FieldState(dependent, parent_value)
                loads.append(self._load(dependent.field_name))
        if loads:
            await asyncio.gather(*loads)

    async def _load(self, field_name: str, search: Optional[str] = None) -> None:
        state = self.fields.get(field_name)
        if state is None:
            return
        token = self._issue(field_name)
        state.loading = True
        state.error = None
        try:
            options = await self.loader.load_options(
                state.dependent.directory_id, search, state.parent_value
            )
        except OptionLoadError as exc:
            if self._is_current(field_name, token) and self.fields.get(field_name) is state:
                state.loading = False
                state.error = str(exc)
                logger.warning("Option load failed", field=field_name, error=str(exc))
            return
        if not self._is_current(field_name, token) or self.fields.get(field_name) is not state:
            logger.debug("Discarding stale options", field=field_name)
            return
        state.options = options
        state.loading = False

    # ── Search-as-you-type ───────────────────────────────────────────────────

    def search(self, field_name: str, term: str) -> Optional[asyncio.Task]:
        """
        Debounced option search. Each keystroke restarts the timer; terms
        shorter than min_search_length (other than empty, which reloads
        the unfiltered list) do not hit the loader.
        """
        self._ensure_open()
        state = self.fields.get(field_name)
        if state is None:
            raise ValueError(f"Field '{field_name}' is not visible")
        state.search = term
        self._cancel_search(field_name)
        cleaned = term.strip()
        if cleaned and len(cleaned) < self.min_search_length:
            return None
        task = asyncio.create_task(self._debounced(state, cleaned or None))
        self._searches[field_name] = task
        return task

    async def _debounced(self, state: FieldState, term: Optional[str]) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)
        field_name = state.dependent.field_name
        if self.fields.get(field_name) is not state:
            return
        await self._load(field_name, term)

    def _cancel_search(self, field_name: str) -> None:
        task = self._searches.pop(field_name, None)
        if task is not None and not task.done():
            task.cancel()

    def _cancel_searches(self) -> None:
        for name in list(self._searches):
            self._cancel_search(name)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("CascadeSession is closed")

    async def close(self) -> None:
        """Stop pending searches; late responses are ignored from here on."""
        self._closed = True
        pending = [t for t in self._searches.values() if not t.done()]
        self._cancel_searches()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
