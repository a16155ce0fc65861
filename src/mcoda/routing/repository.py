"""Capability registry and routing defaults backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlmodel import Session, col, select

from mcoda.routing.models import (
    AgentHealthView,
    AgentView,
    AgentWrite,
    HealthStatus,
    RoutingDefault,
)
from mcoda.storage.alembic_runner import upgrade_head
from mcoda.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from mcoda.storage.sqlmodel_models import (
    AgentCapabilityRow,
    AgentHealthRow,
    AgentRow,
    RoutingDefaultRow,
)


class RoutingRepository:
    """Persistence facade for agents, capabilities, health and routing defaults."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def upsert_agent(self, payload: AgentWrite) -> AgentView:
        """Register an agent by slug, replacing its capability set."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(select(AgentRow).where(AgentRow.slug == payload.slug)).one_or_none()
            if row is None:
                row = AgentRow(
                    id=str(uuid4()),
                    slug=payload.slug,
                    adapter=payload.adapter,
                    created_at=now,
                    updated_at=now,
                )
            row.adapter = payload.adapter
            row.default_model = payload.default_model
            row.rating = payload.rating
            row.cost_per_million = payload.cost_per_million
            row.updated_at = now
            session.add(row)
            session.flush()
            session.exec(
                sa_delete(AgentCapabilityRow).where(col(AgentCapabilityRow.agent_id) == row.id),
            )
            for capability in dict.fromkeys(payload.capabilities):
                session.add(AgentCapabilityRow(agent_id=row.id, capability=capability))
            agent_id = row.id
            session.commit()
        view = self.get_agent(agent_id)
        if view is None:
            raise RuntimeError(f"Agent {payload.slug} vanished after upsert.")
        return view

    def set_health(
        self,
        agent_id: str,
        *,
        status: HealthStatus,
        latency_ms: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(AgentHealthRow, agent_id)
            if row is None:
                row = AgentHealthRow(agent_id=agent_id, status=status.value, checked_at=now)
            row.status = status.value
            row.latency_ms = latency_ms
            row.details_json = (
                json.dumps(details, ensure_ascii=False, sort_keys=True) if details else None
            )
            row.checked_at = now
            session.add(row)
            session.commit()

    def get_agent(self, id_or_slug: str) -> AgentView | None:
        """Look an agent up by id first, then by slug."""

        with Session(self.engine) as session:
            row = session.get(AgentRow, id_or_slug)
            if row is None:
                row = session.exec(
                    select(AgentRow).where(AgentRow.slug == id_or_slug),
                ).one_or_none()
            if row is None:
                return None
            return self._to_agent_view(session, row)

    def list_agents(self) -> list[AgentView]:
        with Session(self.engine) as session:
            rows = session.exec(select(AgentRow).order_by(col(AgentRow.slug).asc())).all()
            return [self._to_agent_view(session, row) for row in rows]

    def list_defaults(self, workspace_id: str) -> list[RoutingDefault]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(RoutingDefaultRow, AgentRow.slug)
                .join(AgentRow, col(AgentRow.id) == col(RoutingDefaultRow.agent_id))
                .where(RoutingDefaultRow.workspace_id == workspace_id)
                .order_by(col(RoutingDefaultRow.command_name).asc()),
            ).all()
            return [_to_default(row, slug) for row, slug in rows]

    def apply_defaults_update(
        self,
        workspace_id: str,
        *,
        bindings: dict[str, str],
        reset: list[str],
        qa_profile: str | None = None,
        docdex_scope: str | None = None,
    ) -> list[RoutingDefault]:
        """Upsert and clear bindings for one workspace in a single transaction.

        ``bindings`` maps canonical command names to agent ids. When it is
        empty, ``qa_profile``/``docdex_scope`` are applied to every existing
        binding of the workspace instead.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            for command_name in reset:
                session.exec(
                    sa_delete(RoutingDefaultRow).where(
                        col(RoutingDefaultRow.workspace_id) == workspace_id,
                        col(RoutingDefaultRow.command_name) == command_name,
                    ),
                )
            for command_name, agent_id in bindings.items():
                row = session.exec(
                    select(RoutingDefaultRow).where(
                        RoutingDefaultRow.workspace_id == workspace_id,
                        RoutingDefaultRow.command_name == command_name,
                    ),
                ).one_or_none()
                if row is None:
                    row = RoutingDefaultRow(
                        workspace_id=workspace_id,
                        command_name=command_name,
                        agent_id=agent_id,
                        updated_at=now,
                    )
                row.agent_id = agent_id
                if qa_profile is not None:
                    row.qa_profile = qa_profile
                if docdex_scope is not None:
                    row.docdex_scope = docdex_scope
                row.updated_at = now
                session.add(row)
            if not bindings and (qa_profile is not None or docdex_scope is not None):
                rows = session.exec(
                    select(RoutingDefaultRow).where(RoutingDefaultRow.workspace_id == workspace_id),
                ).all()
                for row in rows:
                    if qa_profile is not None:
                        row.qa_profile = qa_profile
                    if docdex_scope is not None:
                        row.docdex_scope = docdex_scope
                    row.updated_at = now
                    session.add(row)
            session.commit()
        return self.list_defaults(workspace_id)

    def _to_agent_view(self, session: Session, row: AgentRow) -> AgentView:
        capabilities = session.exec(
            select(AgentCapabilityRow.capability)
            .where(AgentCapabilityRow.agent_id == row.id)
            .order_by(col(AgentCapabilityRow.id).asc()),
        ).all()
        health_row = session.get(AgentHealthRow, row.id)
        health = None
        if health_row is not None:
            health = AgentHealthView(
                status=HealthStatus(health_row.status),
                checked_at=to_utc_aware_datetime(health_row.checked_at),
                latency_ms=health_row.latency_ms,
            )
        return AgentView(
            id=row.id,
            slug=row.slug,
            adapter=row.adapter,
            capabilities=tuple(capabilities),
            default_model=row.default_model,
            health=health,
            rating=row.rating,
            cost_per_million=row.cost_per_million,
        )


def _to_default(row: RoutingDefaultRow, slug: str | None) -> RoutingDefault:
    return RoutingDefault(
        workspace_id=row.workspace_id,
        command_name=row.command_name,
        agent_id=row.agent_id,
        agent_slug=slug,
        qa_profile=row.qa_profile,
        docdex_scope=row.docdex_scope,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
