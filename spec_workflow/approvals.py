"""Approval request storage.

Approval records are JSON files grouped by category (one category per
specification) under ``approvals/<category>/<id>.json``. Records written by
older versions sit directly in ``approvals/<id>.json``; both layouts are read
and merged. Every record goes through :func:`normalize_approval` on read so
legacy fields never leak past this module.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import (
    ApprovalNotFoundError,
    InvalidTransitionError,
    IOFailureError,
    MalformedRecordError,
)
from .models import (
    APPROVAL_TYPES,
    RESPONSE_STATUSES,
    ApprovalComment,
    ApprovalRecord,
    ArtifactContent,
    normalize_approval,
    parse_timestamp,
    utc_now,
)
from .paths import WorkflowPaths, as_workflow_paths, validate_name
from .storage import path_lock, read_text, write_json_atomic
from .workflow_logging import log_operation, log_performance, log_workflow_event

logger = logging.getLogger("spec_workflow.approvals")

CommentInput = Union[ApprovalComment, Dict[str, Any]]

_WINDOWS_ABSOLUTE = re.compile(r"^[A-Za-z]:[\\/]")


def _generate_approval_id() -> str:
    return f"approval_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _is_absolute(file_path: str) -> bool:
    return file_path.startswith("/") or bool(_WINDOWS_ABSOLUTE.match(file_path))


class ApprovalStore:
    """CRUD and lifecycle transitions over approval records."""

    def __init__(self, project: WorkflowPaths | Path | str):
        self.paths = as_workflow_paths(project)

    @property
    def approvals_dir(self) -> Path:
        return self.paths.approvals_root

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _iter_record_files(self) -> Iterator[Tuple[Path, Optional[str]]]:
        """Yield ``(path, category)`` for every record file, category layout first."""
        root = self.approvals_dir
        if not root.is_dir():
            return
        try:
            entries = sorted(root.iterdir())
        except OSError as exc:
            logger.warning(f"Unable to read approvals directory {root}: {exc}")
            return

        for entry in entries:
            if entry.is_dir():
                try:
                    files = sorted(entry.glob("*.json"))
                except OSError as exc:
                    logger.warning(f"Unable to read approval category {entry}: {exc}")
                    continue
                for path in files:
                    yield path, entry.name

        for entry in entries:
            if entry.is_file() and entry.suffix == ".json":
                yield entry, None

    def _load(self, path: Path, category: Optional[str]) -> ApprovalRecord:
        source = str(path)
        try:
            data = json.loads(read_text(path))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedRecordError(source, str(exc)) from exc
        return normalize_approval(data, source=source, category_hint=category)

    def _find_path(self, approval_id: str) -> Optional[Path]:
        validate_name(approval_id, "approval id")
        root = self.approvals_dir
        if not root.is_dir():
            return None
        filename = f"{approval_id}.json"
        for category_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            candidate = category_dir / filename
            if candidate.is_file():
                return candidate
        legacy = root / filename
        if legacy.is_file():
            return legacy
        return None

    def _category_of(self, path: Path) -> Optional[str]:
        return path.parent.name if path.parent != self.approvals_dir else None

    def get(self, approval_id: str) -> ApprovalRecord:
        """Load one record from either layout."""
        path = self._find_path(approval_id)
        if path is None:
            raise ApprovalNotFoundError(approval_id)
        try:
            return self._load(path, self._category_of(path))
        except FileNotFoundError:
            raise ApprovalNotFoundError(approval_id) from None

    def list(self) -> List[ApprovalRecord]:
        """All readable records, newest first.

        A record that fails to parse is logged and skipped; it never prevents
        the rest from being listed.
        """
        records: Dict[str, ApprovalRecord] = {}
        for path, category in self._iter_record_files():
            try:
                record = self._load(path, category)
            except MalformedRecordError as exc:
                logger.warning(f"Skipping malformed approval record: {exc}")
                continue
            except OSError as exc:
                logger.warning(f"Skipping unreadable approval record {path}: {exc}")
                continue
            records.setdefault(record.id, record)

        return sorted(records.values(), key=lambda r: parse_timestamp(r.created_at), reverse=True)

    def list_pending(self, category_name: Optional[str] = None) -> List[ApprovalRecord]:
        return [
            record for record in self.list()
            if record.is_pending and (category_name is None or record.category_name == category_name)
        ]

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def create(
        self,
        title: str,
        file_path: str,
        category_name: str,
        approval_type: str = "document",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ApprovalRecord:
        """Create a pending approval request for ``file_path``."""
        if not title or not title.strip():
            raise ValueError("Approval title cannot be empty")
        if not file_path or not file_path.strip():
            raise ValueError("Approval file path cannot be empty")
        if approval_type not in APPROVAL_TYPES:
            raise ValueError(f"Invalid approval type '{approval_type}': expected document or action")
        category_dir = self.paths.approval_category_dir(category_name)

        record = ApprovalRecord(
            id=_generate_approval_id(),
            title=title.strip(),
            file_path=file_path,
            category_name=category_name,
            type=approval_type,
            metadata=metadata,
        )
        write_json_atomic(category_dir / f"{record.id}.json", record.to_dict())
        log_workflow_event("approval_created", category_name, approval_id=record.id, title=record.title)
        return record

    @log_performance("approval_transition")
    def transition(
        self,
        approval_id: str,
        status: str,
        response: str,
        annotations: Optional[str] = None,
        comments: Optional[Iterable[CommentInput]] = None,
    ) -> ApprovalRecord:
        """Record a reviewer decision on a pending approval.

        ``respondedAt`` is always stamped. Comments replace any stored ones when
        given and are persisted in their line-range form.
        """
        if status not in RESPONSE_STATUSES:
            raise ValueError(
                f"Invalid approval status '{status}': expected one of {', '.join(RESPONSE_STATUSES)}"
            )
        normalized_comments = None
        if comments is not None:
            normalized_comments = [
                item if isinstance(item, ApprovalComment) else ApprovalComment.from_dict(item)
                for item in comments
            ]

        path = self._find_path(approval_id)
        if path is None:
            raise ApprovalNotFoundError(approval_id)

        with path_lock(path), log_operation("approval_transition", approval_id=approval_id, status=status):
            try:
                record = self._load(path, self._category_of(path))
            except FileNotFoundError:
                raise ApprovalNotFoundError(approval_id) from None
            if not record.is_pending:
                raise InvalidTransitionError(approval_id, record.status, status)

            record.status = status
            record.response = response
            record.annotations = annotations
            record.responded_at = utc_now()
            if normalized_comments is not None:
                record.comments = normalized_comments
            write_json_atomic(path, record.to_dict())

        log_workflow_event(
            "approval_transitioned",
            record.category_name,
            approval_id=approval_id,
            status=status,
            comment_count=len(record.comments),
        )
        return record

    def delete(self, approval_id: str) -> ApprovalRecord:
        """Delete an approved record; other statuses are kept for the audit trail."""
        path = self._find_path(approval_id)
        if path is None:
            raise ApprovalNotFoundError(approval_id)
        with path_lock(path):
            record = self._load(path, self._category_of(path))
            if record.status != "approved":
                raise InvalidTransitionError(approval_id, record.status, "deleted")
            try:
                path.unlink()
            except FileNotFoundError:
                raise ApprovalNotFoundError(approval_id) from None
            except OSError as exc:
                raise IOFailureError(f"Failed to delete approval '{approval_id}': {exc}") from exc
        log_workflow_event("approval_deleted", record.category_name, approval_id=approval_id)
        return record

    def cleanup_old_approvals(self, max_age_days: int = 7) -> List[str]:
        """Remove non-pending records created more than ``max_age_days`` ago."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        removed: List[str] = []
        for path, category in list(self._iter_record_files()):
            try:
                record = self._load(path, category)
            except (MalformedRecordError, OSError) as exc:
                logger.warning(f"Skipping approval during cleanup: {exc}")
                continue
            if record.is_pending or parse_timestamp(record.created_at) >= cutoff:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed.append(record.id)
        if removed:
            logger.info(f"Removed {len(removed)} approval(s) older than {max_age_days} days")
        return removed

    # ------------------------------------------------------------------
    # Artifact resolution
    # ------------------------------------------------------------------

    def candidate_paths(self, record: ApprovalRecord) -> List[Path]:
        """Locations to try for ``record.file_path``, in priority order.

        Stored paths have drifted between versions and platforms, so each form
        is tried under a fixed list of roots. No fuzzy matching is done.
        """
        file_path = record.file_path
        if not file_path:
            return []

        forms = [file_path]
        normalized = file_path.replace("\\", "/")
        if normalized != file_path:
            forms.append(normalized)

        category = record.category_name
        try:
            category = validate_name(category, "category name") if category else None
        except ValueError:
            category = None

        workflow_dir = self.paths.workflow_dir
        candidates: List[Path] = []
        for form in forms:
            candidates.append(self.paths.project_root / form)
            if _is_absolute(form):
                candidates.append(Path(form))
                continue
            if workflow_dir in form:
                continue
            candidates.append(self.paths.workflow_root / form)
            candidates.append(self.paths.specs_root / form)
            if category:
                candidates.append(self.paths.specs_root / category / form)
            candidates.append(self.paths.archive_root / form)
            if category:
                candidates.append(self.paths.archive_root / category / form)

        unique: List[Path] = []
        seen = set()
        for candidate in candidates:
            key = str(candidate)
            if key not in seen:
                seen.add(key)
                unique.append(candidate)
        return unique

    def resolve_artifact(self, record: ApprovalRecord) -> Optional[ArtifactContent]:
        """Content of the first readable candidate, or ``None`` if all are absent."""
        for candidate in self.candidate_paths(record):
            if not candidate.is_file():
                continue
            try:
                content = read_text(candidate)
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug(f"Artifact candidate {candidate} unreadable: {exc}")
                continue
            return ArtifactContent(content=content, path=str(candidate))
        return None
