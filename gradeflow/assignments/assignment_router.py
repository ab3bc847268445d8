from typing import List

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.assignments import assignment_service as service
from gradeflow.assignments.assignment_schemas import (
    AssignmentCreate, AssignmentUpdate, AssignmentResponse, StatisticsResponse
)
from gradeflow.common.permissions import UserContext, get_current_user, require_instructor
from gradeflow.common.roster import EnrollmentRoster, get_roster
from gradeflow.database import get_db


router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.post("", response_model=AssignmentResponse, status_code=201)
async def create_assignment(
    data: AssignmentCreate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Create an assignment in a course
    """
    return await service.create_assignment(db, roster, user, data.model_dump(exclude_none=True))


@router.get("/course/{course_id}", response_model=List[AssignmentResponse])
async def list_course_assignments(
    course_id: str,
    include_inactive: bool = Query(False),
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    List a course's assignments, soonest due first
    """
    return await service.list_course_assignments(
        db, course_id, include_inactive=include_inactive and user.is_instructor
    )


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await service.get_assignment(db, assignment_id)


@router.patch("/{assignment_id}", response_model=AssignmentResponse)
async def update_assignment(
    assignment_id: str,
    data: AssignmentUpdate,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Update grading parameters, dates or policies
    """
    return await service.update_assignment(db, assignment_id, user, data.model_dump(exclude_none=True))


@router.post("/{assignment_id}/publish", response_model=AssignmentResponse)
async def publish_assignment(
    assignment_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Make the assignment visible and open for submissions
    """
    return await service.publish_assignment(db, assignment_id, user)


@router.delete("/{assignment_id}", status_code=204)
async def delete_assignment(
    assignment_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Deactivate an assignment (soft delete)
    """
    await service.delete_assignment(db, assignment_id, user)
    return None


@router.post("/{assignment_id}/statistics/refresh", response_model=StatisticsResponse)
async def refresh_statistics(
    assignment_id: str,
    user: UserContext = Depends(require_instructor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    roster: EnrollmentRoster = Depends(get_roster)
):
    """
    Rebuild the cached statistics block from the stored submissions and grades
    """
    return await service.refresh_statistics(db, roster, assignment_id, user)
