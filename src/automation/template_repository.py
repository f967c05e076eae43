"""
Template persistence for learned forms.

Templates are stored one JSON document per template so they survive
restarts and can be shared between runs. Success rates are updated
with an exponential moving average; updates to the same template are
serialised by a per-template lock.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from src.automation.exceptions import TemplateNotFoundError
from src.automation.models import FormTemplate, FormType, extract_domain

logger = logging.getLogger(__name__)

# Weight of the previous rate in the moving average
EMA_OLD_WEIGHT = 0.7
EMA_NEW_WEIGHT = 0.3


def ema_success_rate(old_rate: float, observed_rate: float) -> float:
    """Blend an observed success rate into the stored one.

    The observed rate is clamped to [0, 100] first, so the result stays
    in [0, 100] and equals ``old_rate`` when both are the same.
    """
    observed = min(max(observed_rate, 0.0), 100.0)
    return EMA_OLD_WEIGHT * old_rate + EMA_NEW_WEIGHT * observed


class TemplateCriteria(BaseModel):
    """Filters for template searches. Empty filters match everything."""

    domain: str | None = None
    url: str | None = None
    form_type: FormType | None = None
    min_success_rate: float = Field(default=0.0, ge=0, le=100)
    max_age: timedelta | None = None


class TemplateMetrics(BaseModel):
    """Aggregate statistics over stored templates."""

    total_templates: int = 0
    average_success_rate: float = 0.0
    by_domain: dict[str, int] = Field(default_factory=dict)
    by_form_type: dict[str, int] = Field(default_factory=dict)
    oldest: datetime | None = None
    newest: datetime | None = None


def validate_template(template: FormTemplate) -> list[str]:
    """Structural problems that make a template unusable.

    Returns:
        Problem descriptions; empty when the template is valid
    """
    problems: list[str] = []
    if not template.id:
        problems.append("template id is required")
    if not template.url:
        problems.append("template url is required")
    if not template.domain:
        problems.append("template domain is required")
    if not template.fields:
        problems.append("template must have at least one field")

    for index, field in enumerate(template.fields):
        if not field.name and not field.label:
            problems.append(f"field {index} has neither name nor label")
        if not template.selector_for(field):
            problems.append(f"field {field.name or index} has no selector")
    return problems


class TemplateRepository(ABC):
    """Storage contract for form templates."""

    @abstractmethod
    async def get(self, template_id: str) -> FormTemplate:
        """Get a template by id.

        Raises:
            TemplateNotFoundError: If it does not exist
        """
        ...

    @abstractmethod
    async def save(self, template: FormTemplate) -> FormTemplate:
        """Insert or replace a template."""
        ...

    @abstractmethod
    async def delete(self, template_id: str) -> None:
        """Delete a template.

        Raises:
            TemplateNotFoundError: If it does not exist
        """
        ...

    @abstractmethod
    async def all(self) -> list[FormTemplate]:
        """Every stored template, in no particular order."""
        ...

    @abstractmethod
    async def update_success(self, template_id: str, observed_rate: float) -> FormTemplate:
        """Fold an observed success rate into a template.

        Raises:
            TemplateNotFoundError: If it does not exist
        """
        ...

    async def find_templates(self, criteria: TemplateCriteria) -> list[FormTemplate]:
        """Templates matching every filter, best success rate first."""
        now = datetime.utcnow()
        matches = []
        for template in await self.all():
            if criteria.domain and template.domain != criteria.domain.lower():
                continue
            if criteria.url and template.url != criteria.url:
                continue
            if criteria.form_type and template.form_type != criteria.form_type:
                continue
            if template.success_rate < criteria.min_success_rate:
                continue
            if criteria.max_age and now - template.last_updated > criteria.max_age:
                continue
            matches.append(template)

        return sorted(matches, key=lambda t: (t.success_rate, t.last_updated), reverse=True)

    async def find_best_template(self, url: str) -> FormTemplate:
        """Best template for a URL: exact URL match first, then same domain.

        Raises:
            TemplateNotFoundError: If neither lookup finds anything
        """
        exact = await self.find_templates(TemplateCriteria(url=url))
        if exact:
            return exact[0]

        domain = extract_domain(url)
        if domain:
            same_domain = await self.find_templates(TemplateCriteria(domain=domain))
            if same_domain:
                return same_domain[0]

        raise TemplateNotFoundError(f"No template for {url}")

    async def get_templates_by_domain(self, domain: str) -> list[FormTemplate]:
        return await self.find_templates(TemplateCriteria(domain=domain))

    async def list_templates(self, limit: int = 50, offset: int = 0) -> list[FormTemplate]:
        """Page through templates, most recently updated first."""
        templates = sorted(await self.all(), key=lambda t: t.last_updated, reverse=True)
        if offset >= len(templates):
            return []
        return templates[offset : offset + limit]

    async def cleanup_old_templates(self, max_age: timedelta) -> int:
        """Delete templates not updated within ``max_age``.

        Returns:
            Number of templates deleted
        """
        cutoff = datetime.utcnow() - max_age
        removed = 0
        for template in await self.all():
            if template.last_updated < cutoff:
                await self.delete(template.id)
                removed += 1

        if removed:
            logger.info(f"Cleaned up {removed} templates older than {max_age}")
        return removed

    async def get_metrics(self) -> TemplateMetrics:
        templates = await self.all()
        if not templates:
            return TemplateMetrics()

        metrics = TemplateMetrics(total_templates=len(templates))
        for template in templates:
            metrics.by_domain[template.domain] = metrics.by_domain.get(template.domain, 0) + 1
            form_type = template.form_type.value
            metrics.by_form_type[form_type] = metrics.by_form_type.get(form_type, 0) + 1

        metrics.average_success_rate = sum(t.success_rate for t in templates) / len(templates)
        metrics.oldest = min(t.last_updated for t in templates)
        metrics.newest = max(t.last_updated for t in templates)
        return metrics

    async def export_templates(self, path: str | Path) -> int:
        """Write every template to a JSON array file.

        Returns:
            Number of templates exported
        """
        templates = await self.all()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump([t.model_dump(mode="json") for t in templates], f, indent=2)

        logger.info(f"Exported {len(templates)} templates to {path}")
        return len(templates)

    async def import_templates(self, path: str | Path) -> int:
        """Load templates from a JSON array file, replacing same-id templates.

        Invalid entries are skipped with a warning.

        Returns:
            Number of templates imported
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        imported = 0
        for entry in data:
            try:
                template = FormTemplate.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Skipping invalid template in {path}: {e}")
                continue

            problems = validate_template(template)
            if problems:
                logger.warning(f"Skipping template {template.id}: {'; '.join(problems)}")
                continue

            await self.save(template)
            imported += 1

        logger.info(f"Imported {imported} templates from {path}")
        return imported


class FileTemplateRepository(TemplateRepository):
    """
    File-based template store.

    Stores each template as a JSON file in a directory and keeps an
    in-memory copy of everything on disk.
    """

    def __init__(self, storage_dir: str | Path = "data/templates"):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._cache: dict[str, FormTemplate] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._load_all()
        logger.info(f"Template repository initialized at {self.storage_dir} ({len(self._cache)} templates)")

    def _template_path(self, template_id: str) -> Path:
        """Get file path for a template."""
        return self.storage_dir / f"{template_id}.json"

    def _load_all(self) -> None:
        for path in self.storage_dir.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    template = FormTemplate.model_validate(json.load(f))
                self._cache[template.id] = template
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load template from {path}: {e}")

    def _write(self, template: FormTemplate) -> None:
        path = self._template_path(template.id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(template.model_dump(mode="json"), f, indent=2)
        tmp_path.replace(path)

    async def get(self, template_id: str) -> FormTemplate:
        template = self._cache.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    async def save(self, template: FormTemplate) -> FormTemplate:
        """
        Save a template to disk.

        Args:
            template: Template to persist

        Returns:
            The stored template
        """
        async with self._locks[template.id]:
            self._write(template)
            self._cache[template.id] = template

        logger.debug(f"Template {template.id} saved")
        return template

    async def delete(self, template_id: str) -> None:
        """Delete a template."""
        try:
            async with self._locks[template_id]:
                if template_id not in self._cache:
                    raise TemplateNotFoundError(f"Template {template_id} not found")

                path = self._template_path(template_id)
                if path.exists():
                    path.unlink()
                del self._cache[template_id]
        finally:
            self._discard_lock(template_id)

        logger.info(f"Template {template_id} deleted")

    async def all(self) -> list[FormTemplate]:
        return list(self._cache.values())

    def _discard_lock(self, template_id: str) -> None:
        """Forget the lock of a template that is no longer stored."""
        lock = self._locks.get(template_id)
        if lock is not None and not lock.locked() and template_id not in self._cache:
            del self._locks[template_id]

    async def update_success(self, template_id: str, observed_rate: float) -> FormTemplate:
        """Apply the moving average under the template's lock."""
        try:
            async with self._locks[template_id]:
                current = self._cache.get(template_id)
                if current is None:
                    raise TemplateNotFoundError(f"Template {template_id} not found")

                updated = current.model_copy(
                    update={
                        "success_rate": ema_success_rate(current.success_rate, observed_rate),
                        "last_updated": datetime.utcnow(),
                    }
                )
                self._write(updated)
                self._cache[template_id] = updated
        finally:
            self._discard_lock(template_id)

        logger.debug(
            f"Template {template_id} success rate {current.success_rate:.1f} -> {updated.success_rate:.1f}"
        )
        return updated


# Global template repository instance
_template_repository: TemplateRepository | None = None


def get_template_repository() -> TemplateRepository:
    """Get or create the global template repository."""
    global _template_repository
    if _template_repository is None:
        from src.config import settings

        _template_repository = FileTemplateRepository(settings.templates_dir)
    return _template_repository


def set_template_repository(repository: TemplateRepository | None) -> None:
    """Replace the global template repository (None resets it)."""
    global _template_repository
    _template_repository = repository


def template_summary(template: FormTemplate) -> dict[str, Any]:
    """Short dict used by listings."""
    return {
        "id": template.id,
        "domain": template.domain,
        "form_type": template.form_type.value,
        "fields": len(template.fields),
        "success_rate": round(template.success_rate, 1),
        "version": template.version,
        "last_updated": template.last_updated.isoformat(),
    }
