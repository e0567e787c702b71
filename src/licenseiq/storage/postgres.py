"""
PostgreSQL database adapter using SQLAlchemy async.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, AsyncGenerator
from uuid import uuid4

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from licenseiq.config import get_settings
from licenseiq.exceptions import PersistenceError
from licenseiq.models.rule import SynthesizedRule, TermMapping, ValidationStatus

logger = structlog.get_logger(__name__)

CONFIRMED = "confirmed"


class PostgresAdapter:
    """
    PostgreSQL database adapter.

    Handles rule definition inserts and pending term mapping reads/updates.
    """

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        self.database_url = database_url or settings.postgres_url

        self.engine = create_async_engine(
            self.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return False

    # =========================================================================
    # Rule Definition Operations
    # =========================================================================

    async def insert_rule_definition(
        self,
        contract_id: str,
        run_id: str | None,
        rule: SynthesizedRule,
        validation_status: ValidationStatus,
        is_active: bool,
    ) -> str:
        """Insert a synthesized rule and return its new id."""
        rule_id = str(uuid4())
        now = datetime.now(timezone.utc)

        try:
            async with self.session() as session:
                await session.execute(
                    text("""
                        INSERT INTO rule_definitions (
                            id, contract_id, extraction_run_id, linked_graph_node_id,
                            rule_type, rule_name, description, formula_definition,
                            applicability_filters, confidence, validation_status,
                            is_active, version, created_at, updated_at
                        ) VALUES (
                            :id, :contract_id, :extraction_run_id, :linked_graph_node_id,
                            :rule_type, :rule_name, :description,
                            CAST(:formula_definition AS jsonb),
                            CAST(:applicability_filters AS jsonb),
                            :confidence, :validation_status,
                            :is_active, 1, :created_at, :updated_at
                        )
                    """),
                    {
                        "id": rule_id,
                        "contract_id": contract_id,
                        "extraction_run_id": run_id,
                        "linked_graph_node_id": rule.linked_node_id,
                        "rule_type": rule.rule_type,
                        "rule_name": rule.rule_name,
                        "description": rule.description,
                        "formula_definition": json.dumps(rule.stored_formula()),
                        "applicability_filters": json.dumps(rule.applicability_filters),
                        # Column is decimal(5, 2)
                        "confidence": round(rule.confidence, 2),
                        "validation_status": validation_status.value,
                        "is_active": is_active,
                        "created_at": now,
                        "updated_at": now,
                    },
                )
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "rule_insert_failed",
                contract_id=contract_id,
                rule_name=rule.rule_name,
                error=str(e),
            )
            raise PersistenceError(f"Failed to insert rule '{rule.rule_name}'", e) from e

        logger.info(
            "rule_definition_created",
            rule_id=rule_id,
            contract_id=contract_id,
            validation_status=validation_status.value,
        )
        return rule_id

    async def list_rule_definitions(
        self,
        contract_id: str,
        validation_status: ValidationStatus | None = None,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        """List stored rules for a contract, newest first."""
        query = "SELECT * FROM rule_definitions WHERE contract_id = :contract_id"
        params: dict[str, Any] = {"contract_id": contract_id}

        if validation_status:
            query += " AND validation_status = :validation_status"
            params["validation_status"] = validation_status.value

        query += " ORDER BY created_at DESC LIMIT :limit"
        params["limit"] = limit

        async with self.session() as session:
            result = await session.execute(text(query), params)
            rows = result.mappings().fetchall()
            return [self._row_to_rule(row) for row in rows]

    # =========================================================================
    # Term Mapping Operations
    # =========================================================================

    async def get_pending_term_mappings(
        self,
        contract_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Term mapping rows for a contract, highest confidence first."""
        query = "SELECT * FROM pending_term_mappings WHERE contract_id = :contract_id"
        params: dict[str, Any] = {"contract_id": contract_id}

        if status:
            query += " AND status = :status"
            params["status"] = status

        # id breaks confidence ties so callers see a stable order
        query += " ORDER BY confidence DESC, id ASC"

        async with self.session() as session:
            result = await session.execute(text(query), params)
            rows = result.mappings().fetchall()
            return [dict(row) for row in rows]

    async def get_confirmed_term_mappings(self, contract_id: str) -> list[TermMapping]:
        """Confirmed contract-term to ERP-field mappings for a contract."""
        try:
            rows = await self.get_pending_term_mappings(contract_id, status=CONFIRMED)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(
                f"Failed to load term mappings for contract {contract_id}", e
            ) from e
        return [self._row_to_term_mapping(row) for row in rows if row.get("erp_field_name")]

    async def update_term_mapping(
        self,
        mapping_id: str,
        contract_term: str | None = None,
        erp_field_name: str | None = None,
    ) -> dict[str, Any] | None:
        """Update the contract term and/or ERP field name of a mapping."""
        update_fields = ["updated_at = :updated_at"]
        params: dict[str, Any] = {
            "id": mapping_id,
            "updated_at": datetime.now(timezone.utc),
        }

        if contract_term is not None:
            update_fields.append("original_term = :original_term")
            params["original_term"] = contract_term
        if erp_field_name is not None:
            update_fields.append("erp_field_name = :erp_field_name")
            params["erp_field_name"] = erp_field_name

        query = (
            f"UPDATE pending_term_mappings SET {', '.join(update_fields)} "
            "WHERE id = :id RETURNING *"
        )

        async with self.session() as session:
            result = await session.execute(text(query), params)
            row = result.mappings().fetchone()

        if row is None:
            return None
        logger.info("term_mapping_updated", mapping_id=mapping_id)
        return dict(row)

    async def delete_term_mapping(self, mapping_id: str) -> bool:
        """Delete a term mapping. Returns False if it did not exist."""
        async with self.session() as session:
            result = await session.execute(
                text("DELETE FROM pending_term_mappings WHERE id = :id"),
                {"id": mapping_id},
            )
            deleted = (result.rowcount or 0) > 0

        if deleted:
            logger.info("term_mapping_deleted", mapping_id=mapping_id)
        return deleted

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _load_json(value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    def _row_to_rule(self, row: Any) -> dict[str, Any]:
        """Convert a rule_definitions row to plain JSON-friendly values."""
        data = dict(row)
        data["formula_definition"] = self._load_json(data.get("formula_definition")) or {}
        data["applicability_filters"] = self._load_json(data.get("applicability_filters"))
        if isinstance(data.get("confidence"), Decimal):
            data["confidence"] = float(data["confidence"])
        return data

    def _row_to_term_mapping(self, row: dict[str, Any]) -> TermMapping:
        """Convert a pending_term_mappings row to a TermMapping."""
        return TermMapping(
            contract_term=row["original_term"],
            erp_field_name=row["erp_field_name"],
            erp_entity_name=row.get("erp_entity_name") or None,
            confidence=float(row.get("confidence") or 0),
        )


@lru_cache()
def get_postgres_adapter() -> PostgresAdapter:
    """Get cached PostgreSQL adapter instance."""
    return PostgresAdapter()
