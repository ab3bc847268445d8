from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.database import get_db


class EnrollmentRoster:
    """
    Read-only view of course enrollment, owned by the course service
    """
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def course_exists(self, course_id: str) -> bool:
        course = await self.db.courses.find_one({"course_id": course_id}, {"_id": 1})
        return course is not None

    async def is_enrolled(self, course_id: str, student_id: str) -> bool:
        enrollment = await self.db.course_enrollments.find_one({
            "course_id": course_id,
            "student_id": student_id,
            "is_active": True
        })
        return enrollment is not None

    async def count_enrolled(self, course_id: str) -> int:
        return await self.db.course_enrollments.count_documents({
            "course_id": course_id,
            "is_active": True
        })


async def get_roster(db: AsyncIOMotorDatabase = Depends(get_db)) -> EnrollmentRoster:
    """Roster dependency"""
    return EnrollmentRoster(db)
