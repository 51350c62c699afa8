"""Answer-choice reconciliation.

Brings the stored choices of a question in line with an edited list by
position: index `i` of the existing list (ordered by id) is compared to
index `i` of the submitted list. Reordering choices therefore shows up
as text updates, not as a no-op.

Operations are applied one at a time and the run stops at the first
failing store call. The result reports what was applied before the
failure so the caller can show partial completion.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .access import require_question_owner
from .errors import TestcraftError
from .store import RemoteStore

logger = logging.getLogger("testcraft.reconciler")

UPDATE = "update"
INSERT = "insert"
DELETE = "delete"
DELETE_ANSWER = "delete_answer"
DELETE_ALL = "delete_all"


@dataclass(frozen=True)
class ChoiceOp:
    """One store operation planned by the diff."""
    kind: str
    choice_id: Optional[int] = None
    text: Optional[str] = None

    def to_dict(self) -> dict:
        return {"op": self.kind, "choice_id": self.choice_id, "text": self.text}


@dataclass
class ReconcileResult:
    ok: bool
    applied: List[ChoiceOp] = field(default_factory=list)
    error: Optional[TestcraftError] = None
    failed_op: Optional[ChoiceOp] = None
    # set by callers that write the parent question before reconciling
    question_text_updated: bool = False

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "question_text_updated": self.question_text_updated,
            "applied": [op.to_dict() for op in self.applied],
            "error": self.error.message if self.error else None,
            "failed_op": self.failed_op.to_dict() if self.failed_op else None,
        }


def _choice_text(choice) -> str:
    text = choice if isinstance(choice, str) else choice.text
    return (text or "").strip()


def plan_choice_changes(existing: Sequence, new: Sequence) -> List[ChoiceOp]:
    """Return the operations turning `existing` into `new`.

    `existing` items need `id` and `text`; `new` items are strings or
    objects with `text`.
    """
    if not new:
        return [ChoiceOp(DELETE_ANSWER), ChoiceOp(DELETE_ALL)]
    ops = []
    for i in range(max(len(existing), len(new))):
        old = existing[i] if i < len(existing) else None
        wanted = _choice_text(new[i]) if i < len(new) else None
        if old is not None and wanted is not None:
            if _choice_text(old) != wanted:
                ops.append(ChoiceOp(UPDATE, old.id, wanted))
        elif wanted is not None:
            ops.append(ChoiceOp(INSERT, None, wanted))
        else:
            ops.append(ChoiceOp(DELETE_ANSWER, old.id))
            ops.append(ChoiceOp(DELETE, old.id))
    return ops


def _apply(store: RemoteStore, question_id: int, op: ChoiceOp) -> None:
    if op.kind == UPDATE:
        store.update_row("answer_choices", op.choice_id, {"text": op.text})
    elif op.kind == INSERT:
        store.insert_row("answer_choices", {"question_id": question_id, "text": op.text})
    elif op.kind == DELETE_ANSWER:
        filters = {"question_id": question_id}
        if op.choice_id is not None:
            filters["choice_id"] = op.choice_id
        store.delete_row("answers", filters)
    elif op.kind == DELETE:
        store.delete_row("answer_choices", {"id": op.choice_id, "question_id": question_id})
    elif op.kind == DELETE_ALL:
        store.delete_row("answer_choices", {"question_id": question_id})
    else:
        raise ValueError(f"unknown choice operation: {op.kind}")


def reconcile_answer_choices(store: RemoteStore, question_id: int,
                             existing: Sequence, new: Sequence) -> ReconcileResult:
    """Diff `existing` against `new` and apply the result to the store.

    The caller must own the question's test; otherwise nothing is issued
    and the result carries the access error.
    """
    try:
        require_question_owner(store, question_id)
    except TestcraftError as exc:
        return ReconcileResult(ok=False, error=exc)

    ops = plan_choice_changes(existing, new)
    applied = []
    for op in ops:
        try:
            _apply(store, question_id, op)
        except TestcraftError as exc:
            logger.warning(
                "reconcile_failed %s",
                json.dumps({
                    "question_id": question_id,
                    "failed_op": op.to_dict(),
                    "applied": len(applied),
                    "remaining": len(ops) - len(applied) - 1,
                    "error": exc.message,
                }, ensure_ascii=True),
            )
            return ReconcileResult(ok=False, applied=applied, error=exc, failed_op=op)
        applied.append(op)
    logger.info(
        "reconcile_done %s",
        json.dumps({"question_id": question_id, "ops": len(applied)}, ensure_ascii=True),
    )
    return ReconcileResult(ok=True, applied=applied)
