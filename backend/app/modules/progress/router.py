import json
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, ProgrammingError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, SchoolError, ToHttpException, ValidationError
from app.db import GetDb
from app.modules.auth.deps import ADMIN_ROLE, RequireSchoolRole, UserContext
from app.modules.progress.models import LessonProgressAudit, LessonProgressCard
from app.modules.progress.schemas import (
    BatchMoveRequest,
    BatchMoveResponse,
    BoardColumnOut,
    BoardResponse,
    CardAuditOut,
    CardAuditResponse,
    CardCreate,
    CardLockOut,
    CardMoveRequest,
    CardOut,
    CardUpdate,
    FailedMoveOut,
    LockCleanupResponse,
    MovedCardOut,
    ReorderRequest,
    ReorderResponse,
)
from app.modules.progress.services.batch_move_service import (
    CardMove,
    ExecuteBatchMove,
    MoveCard,
    ReorderCardsInColumn,
)
from app.modules.progress.services.audit_service import GetCardAuditTrail
from app.modules.progress.services.board_service import CreateCard, DeleteCard, ListBoard, UpdateCard
from app.modules.progress.services.card_lock_service import (
    AcquireCardLock,
    CardLockState,
    CleanupExpiredLocks,
    GetCardLockState,
    ReleaseCardLock,
)
from app.modules.progress.utils.clock import AsUtc
from app.modules.progress.utils.rbac import BoardTeacherScope, RequireBoardMember

logger = logging.getLogger("progress")

router = APIRouter(prefix="/api/teacher/progress-board", tags=["progress"])
admin_router = APIRouter(prefix="/api/admin/progress", tags=["progress"])
legacy_router = APIRouter(prefix="/api/teacher/progress", tags=["progress"])


def _handle_school_error(exc: SchoolError) -> None:
    raise ToHttpException(exc) from exc


def _handle_db_error(exc: Exception) -> None:
    logger.exception("progress database error")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Progress storage not initialized. Run alembic upgrade head.",
    ) from exc


def _BuildLockOut(state: CardLockState) -> CardLockOut:
    return CardLockOut(
        CardId=state.CardId,
        IsLocked=state.IsLocked,
        LockedBy=state.LockedBy if state.IsLocked else None,
        LockedAt=AsUtc(state.LockedAt) if state.IsLocked else None,
        ExpiresAt=AsUtc(state.ExpiresAt) if state.IsLocked else None,
    )


def _BuildCardOut(card: LessonProgressCard, lock: CardLockState | None = None) -> CardOut:
    return CardOut(
        Id=card.Id,
        TeacherId=card.TeacherId,
        LessonId=card.LessonId,
        StudentId=card.StudentId,
        Title=card.Title,
        Notes=card.Notes,
        Status=card.Status,
        Position=card.Position,
        Version=AsUtc(card.UpdatedAt),
        Lock=_BuildLockOut(lock or GetCardLockState(card)),
        CreatedBy=card.CreatedBy,
        UpdatedBy=card.UpdatedBy,
        CreatedAt=AsUtc(card.CreatedAt),
    )


def _LoadJson(value: str | None) -> dict | None:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def _BuildAuditOut(record: LessonProgressAudit) -> CardAuditOut:
    return CardAuditOut(
        Id=record.Id,
        CardId=record.CardId,
        Action=record.Action,
        ActorUserId=record.ActorUserId,
        Summary=record.Summary,
        Before=_LoadJson(record.BeforeJson),
        After=_LoadJson(record.AfterJson),
        CreatedAt=AsUtc(record.CreatedAt),
    )


@router.get("", response_model=BoardResponse)
def GetProgressBoard(
    student_id: int | None = None,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> BoardResponse:
    try:
        columns = ListBoard(db, user.SchoolId, BoardTeacherScope(user), student_id=student_id)
        return BoardResponse(
            Columns=[
                BoardColumnOut(
                    Status=column.Status,
                    Cards=[_BuildCardOut(entry.Card, entry.Lock) for entry in column.Cards],
                )
                for column in columns
            ]
        )
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/cards", response_model=CardOut, status_code=status.HTTP_201_CREATED)
def CreateProgressCard(
    payload: CardCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardOut:
    teacher_id = user.Id
    if user.Role == ADMIN_ROLE and payload.TeacherId:
        teacher_id = payload.TeacherId
    try:
        record = CreateCard(db, payload.model_dump(exclude={"TeacherId"}), user.SchoolId, teacher_id, user.Id)
        return _BuildCardOut(record)
    except SchoolError as exc:
        _handle_school_error(exc)
    except IntegrityError as exc:
        db.rollback()
        logger.warning("progress card conflict lesson_id=%s student_id=%s", payload.LessonId, payload.StudentId)
        _handle_school_error(ConflictError("A card for this lesson and student already exists"))
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.patch("/cards/{card_id}", response_model=CardOut)
def UpdateProgressCard(
    card_id: int,
    payload: CardUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardOut:
    try:
        record = UpdateCard(
            db,
            card_id,
            payload.model_dump(exclude_unset=True),
            user.SchoolId,
            BoardTeacherScope(user),
            user.Id,
        )
        return _BuildCardOut(record)
    except SchoolError as exc:
        _handle_school_error(exc)
    except IntegrityError as exc:
        db.rollback()
        logger.warning("progress card conflict card_id=%s student_id=%s", card_id, payload.StudentId)
        _handle_school_error(ConflictError("Lesson already assigned to this student"))
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete("/cards/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
def DeleteProgressCard(
    card_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> None:
    try:
        DeleteCard(db, card_id, user.SchoolId, BoardTeacherScope(user), user.Id)
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/cards/{card_id}/audit", response_model=CardAuditResponse)
def GetProgressCardAudit(
    card_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardAuditResponse:
    try:
        entries = GetCardAuditTrail(db, card_id, user.SchoolId, BoardTeacherScope(user))
        return CardAuditResponse(CardId=card_id, Entries=[_BuildAuditOut(entry) for entry in entries])
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/cards/{card_id}/lock", response_model=CardLockOut)
def LockProgressCard(
    card_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardLockOut:
    try:
        return _BuildLockOut(AcquireCardLock(db, card_id, user.Id, user.SchoolId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete("/cards/{card_id}/lock", response_model=CardLockOut)
def UnlockProgressCard(
    card_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardLockOut:
    try:
        return _BuildLockOut(ReleaseCardLock(db, card_id, user.Id, user.SchoolId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/cards/{card_id}/move", response_model=CardOut)
def MoveProgressCard(
    card_id: int,
    payload: CardMoveRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> CardOut:
    move = CardMove(CardId=card_id, Status=payload.Status, Position=payload.Position, Version=payload.Version)
    try:
        if move.Position < 0:
            raise ValidationError("Position must be zero or greater")
        record = MoveCard(db, move, user.SchoolId, BoardTeacherScope(user), user.Id)
        return _BuildCardOut(record)
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/batch-move", response_model=BatchMoveResponse)
def BatchMoveProgressCards(
    payload: BatchMoveRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> BatchMoveResponse:
    moves = [
        CardMove(CardId=item.CardId, Status=item.Status, Position=item.Position, Version=item.Version)
        for item in payload.Moves
    ]
    try:
        result = ExecuteBatchMove(db, moves, user.SchoolId, BoardTeacherScope(user), user.Id)
    except SchoolError as exc:
        _handle_school_error(exc)
    return BatchMoveResponse(
        Updated=[
            MovedCardOut(
                CardId=entry.CardId,
                Status=entry.Status,
                Position=entry.Position,
                Version=AsUtc(entry.Version),
            )
            for entry in result.Updated
        ],
        Failed=[
            FailedMoveOut(CardId=entry.CardId, Code=entry.Code, Message=entry.Message, Details=entry.Details)
            for entry in result.Failed
        ],
    )


legacy_router.add_api_route(
    "/move",
    BatchMoveProgressCards,
    methods=["POST"],
    response_model=BatchMoveResponse,
)


@router.post("/reorder", response_model=ReorderResponse)
def ReorderProgressColumn(
    payload: ReorderRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireBoardMember()),
) -> ReorderResponse:
    try:
        updated = ReorderCardsInColumn(
            db,
            payload.CardIds,
            payload.Status,
            user.SchoolId,
            BoardTeacherScope(user),
            user.Id,
        )
        return ReorderResponse(UpdatedCount=updated)
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@admin_router.post("/locks/cleanup", response_model=LockCleanupResponse)
def CleanupProgressLocks(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolRole(ADMIN_ROLE)),
) -> LockCleanupResponse:
    try:
        return LockCleanupResponse(Cleared=CleanupExpiredLocks(db, school_id=user.SchoolId))
    except ProgrammingError as exc:
        _handle_db_error(exc)
