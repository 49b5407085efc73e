"""Bulk import of strategy and knowledge documents.

Each document is validated against the entry invariants and upserted on
its own. A bad document fails only itself; the rest of the batch proceeds
and the caller gets a per-document outcome report. There is no
transaction across the batch.

Document shapes (JSON):
    strategy:  {"type": "strategy", "strategy_id": ..., "name": ..., "category": ...,
                "description": ..., "risk_level": "Low", "tags": [...], "steps": [...],
                "requirements": [...], "expected_returns": {"min": 0.1, "max": 0.3,
                "timeframe": "yearly"}, "author": ..., "version": ...}
    knowledge: {"type": "knowledge", "source_id": ..., "content": ..., "tags": [...]}

"type" may be omitted: documents with "content" are knowledge, the rest strategies.
"id" is accepted in place of "strategy_id" / "source_id".
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from advisor.exceptions import AdvisorError
from advisor.knowledge.store import KnowledgeStore
from advisor.logging import get_logger
from advisor.models import ExpectedReturns, KnowledgeEntry, RiskLevel, StrategyEntry

logger = get_logger(__name__)


class ExpectedReturnsDocument(BaseModel):
    min: Decimal
    target: Decimal | None = None
    max: Decimal
    timeframe: str = "yearly"

    @model_validator(mode="before")
    @classmethod
    def _unwrap_annual(cls, data: Any) -> Any:
        # {"annual_expected_return": {"min", "target", "max"}, "time_horizon": ...}
        if isinstance(data, dict) and "annual_expected_return" in data:
            inner = dict(data["annual_expected_return"])
            inner.setdefault("timeframe", "yearly")
            return inner
        return data

    @model_validator(mode="after")
    def _check_range(self) -> "ExpectedReturnsDocument":
        if self.target is None:
            self.target = (self.min + self.max) / 2
        if not self.min <= self.target <= self.max:
            raise ValueError("expected returns must satisfy min <= target <= max")
        return self


class StrategyDocument(BaseModel):
    strategy_id: str = Field(
        min_length=1, validation_alias=AliasChoices("strategy_id", "id", "key")
    )
    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    description: str = Field(min_length=1)
    risk_level: RiskLevel
    tags: list[str] = []
    steps: list[str] = []
    requirements: list[str] = []
    expected_returns: ExpectedReturnsDocument | None = None
    author: str | None = ""
    version: str = "1.0.0"

    @field_validator("risk_level", mode="before")
    @classmethod
    def _title_case(cls, value: Any) -> Any:
        return value.strip().title() if isinstance(value, str) else value

    def to_entry(self, owner: str) -> StrategyEntry:
        expected = None
        if self.expected_returns is not None:
            er = self.expected_returns
            expected = ExpectedReturns(
                min=er.min, target=er.target, max=er.max, timeframe=er.timeframe
            )
        return StrategyEntry(
            owner=owner,
            key=self.strategy_id,
            name=self.name,
            category=self.category,
            description=self.description,
            risk_level=self.risk_level,
            tags=frozenset(t.strip() for t in self.tags if t.strip()),
            steps=tuple(self.steps),
            requirements=frozenset(self.requirements),
            expected_returns=expected,
            author=self.author or "",
            version=self.version,
        )


class KnowledgeDocument(BaseModel):
    source_id: str = Field(
        min_length=1, validation_alias=AliasChoices("source_id", "id", "key")
    )
    content: str = Field(min_length=1)
    tags: list[str] = []

    def to_entry(self, owner: str) -> KnowledgeEntry:
        return KnowledgeEntry(
            owner=owner,
            key=self.source_id,
            content=self.content,
            tags=frozenset(t.strip() for t in self.tags if t.strip()),
        )


@dataclass(frozen=True)
class DocumentOutcome:
    """Import result for one document."""

    document: str  # label: file name and/or position in the batch
    success: bool
    kind: Literal["strategy", "knowledge"] | None = None
    key: str | None = None
    error: str | None = None


@dataclass
class ImportReport:
    """Per-document outcomes of one batch import."""

    outcomes: list[DocumentOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[DocumentOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[DocumentOutcome]:
        return [o for o in self.outcomes if not o.success]


def _document_kind(document: dict[str, Any]) -> Literal["strategy", "knowledge"]:
    declared = document.get("type")
    if declared in ("strategy", "knowledge"):
        return declared
    if declared is not None:
        raise ValueError(f"unknown document type {declared!r}")
    return "knowledge" if "content" in document else "strategy"


def _format_validation_error(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
        for err in e.errors()
    )


class KnowledgeImporter:
    """Validates documents and upserts them through the KnowledgeStore."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    async def import_documents(
        self, owner: str, documents: Iterable[Any], label: str = "#"
    ) -> ImportReport:
        """Import in-memory documents. Labels are ``{label}{n}`` (1-based)."""
        report = ImportReport()
        for n, document in enumerate(documents, 1):
            report.outcomes.append(
                await self._import_one(owner, f"{label}{n}", document)
            )
        self._log(owner, report)
        return report

    async def import_directory(self, owner: str, directory: str | Path) -> ImportReport:
        """Import every ``*.json`` file of ``directory`` in name order.

        A file may hold one document or a list of documents. Unreadable
        files are reported as failed documents.
        """
        report = ImportReport()
        for path in sorted(Path(directory).glob("*.json")):
            try:
                content = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                report.outcomes.append(
                    DocumentOutcome(document=path.name, success=False, error=str(e))
                )
                logger.warning("document_unreadable", path=str(path), error=str(e))
                continue

            if isinstance(content, list):
                for i, document in enumerate(content):
                    report.outcomes.append(
                        await self._import_one(owner, f"{path.name}[{i}]", document)
                    )
            else:
                report.outcomes.append(await self._import_one(owner, path.name, content))

        self._log(owner, report)
        return report

    async def _import_one(self, owner: str, label: str, document: Any) -> DocumentOutcome:
        if not isinstance(document, dict):
            return self._failure(label, None, None, "document must be a JSON object")

        try:
            kind = _document_kind(document)
        except ValueError as e:
            return self._failure(label, None, None, str(e))

        key = document.get("strategy_id") or document.get("source_id") or document.get("id")
        try:
            if kind == "strategy":
                stored = await self._store.upsert_strategy(
                    StrategyDocument.model_validate(document).to_entry(owner)
                )
            else:
                stored = await self._store.upsert_knowledge(
                    KnowledgeDocument.model_validate(document).to_entry(owner)
                )
        except ValidationError as e:
            return self._failure(label, kind, key, _format_validation_error(e))
        except AdvisorError as e:
            return self._failure(label, kind, key, str(e))

        return DocumentOutcome(document=label, success=True, kind=kind, key=stored.key)

    @staticmethod
    def _failure(label, kind, key, error: str) -> DocumentOutcome:
        logger.warning("document_import_failed", document=label, key=key, error=error)
        return DocumentOutcome(
            document=label, success=False, kind=kind, key=key, error=error
        )

    @staticmethod
    def _log(owner: str, report: ImportReport) -> None:
        logger.info(
            "import_complete",
            owner=owner,
            documents=len(report.outcomes),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
