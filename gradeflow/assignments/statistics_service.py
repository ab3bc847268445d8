"""
Assignment statistics maintenance.

The statistics block on an assignment is a display cache. Every refresh
rescans the grades/submissions for the assignment and overwrites the
cached numbers, so a repeated or late refresh always converges on the
stored records.
"""
import logging
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from gradeflow.common.roster import EnrollmentRoster
from gradeflow.grades.grade_scale import DISTRIBUTION_BANDS, LETTER_GRADES, band_of, round_half_up

logger = logging.getLogger(__name__)


def summarize_grades(grades: List[dict]) -> dict:
    percentages = [g["scores"]["percentage"] for g in grades]
    if not percentages:
        return {
            "total_graded": 0,
            "average_grade": 0,
            "highest_grade": 0,
            "lowest_grade": 0,
        }

    return {
        "total_graded": len(percentages),
        "average_grade": round_half_up(sum(percentages) / len(percentages), 2),
        "highest_grade": max(percentages),
        "lowest_grade": min(percentages),
    }


def compute_grade_distribution(grades: List[dict]) -> Dict[str, int]:
    """Count grades per A/B/C/D/F band"""
    distribution = {band: 0 for band in DISTRIBUTION_BANDS}
    for grade in grades:
        distribution[band_of(grade.get("letter_grade"))] += 1
    return distribution


def compute_letter_counts(grades: List[dict]) -> Dict[str, int]:
    """Count grades per exact letter, A+ first. Letters with no grades are left out"""
    counts = {letter: 0 for letter in LETTER_GRADES}
    for grade in grades:
        letter = grade.get("letter_grade")
        if letter in counts:
            counts[letter] += 1
    return {letter: count for letter, count in counts.items() if count}


def course_grade_average(grades: List[dict]) -> dict:
    """Mean percentage and grade points over a course's grades"""
    if not grades:
        return {"total_grades": 0, "average_percentage": 0, "average_grade_points": 0}

    total = len(grades)
    percentage_sum = sum(g["scores"]["percentage"] for g in grades)
    points_sum = sum(g.get("grade_points", 0) for g in grades)
    return {
        "total_grades": total,
        "average_percentage": round_half_up(percentage_sum / total, 2),
        "average_grade_points": round_half_up(points_sum / total, 2),
    }


async def _load_grades(db: AsyncIOMotorDatabase, assignment_id: str) -> List[dict]:
    cursor = db.grades.find(
        {"assignment_id": assignment_id},
        {"scores.percentage": 1, "letter_grade": 1}
    )
    return await cursor.to_list(length=None)


async def refresh_grade_statistics(db: AsyncIOMotorDatabase, assignment_id: str) -> dict:
    """
    Frequent path, run after every grade create/update/delete:
    total_graded and average_grade over the current grades.
    """
    summary = summarize_grades(await _load_grades(db, assignment_id))
    update = {
        "statistics.total_graded": summary["total_graded"],
        "statistics.average_grade": summary["average_grade"],
    }

    await db.assignments.update_one({"assignment_id": assignment_id}, {"$set": update})
    logger.debug("Grade statistics refreshed for %s: %s", assignment_id, update)
    return summary


async def refresh_assignment_statistics(
    db: AsyncIOMotorDatabase,
    assignment_id: str,
    roster: EnrollmentRoster
) -> dict:
    """
    Less frequent full path: grade summary plus submission counts,
    extremes, submission rate and average time spent.
    """
    assignment = await db.assignments.find_one({"assignment_id": assignment_id})
    if not assignment:
        logger.warning("Statistics refresh skipped, assignment %s not found", assignment_id)
        return {}

    grades = await _load_grades(db, assignment_id)
    submissions = await db.submissions.find(
        {"assignment_id": assignment_id},
        {"grading.is_graded": 1, "timing.time_spent": 1}
    ).to_list(length=None)

    summary = summarize_grades(grades)
    total_submissions = len(submissions)
    graded_submissions = sum(1 for s in submissions if s.get("grading", {}).get("is_graded"))

    enrolled = await roster.count_enrolled(assignment["course_id"])
    submission_rate = 0
    if enrolled:
        submission_rate = round_half_up(total_submissions / enrolled * 100, 2)

    times = [s.get("timing", {}).get("time_spent", 0) for s in submissions]
    average_time_spent = round_half_up(sum(times) / len(times), 2) if times else 0

    statistics = {
        "total_submissions": total_submissions,
        "graded_submissions": graded_submissions,
        "total_graded": summary["total_graded"],
        "average_grade": summary["average_grade"],
        "highest_grade": summary["highest_grade"],
        "lowest_grade": summary["lowest_grade"],
        "submission_rate": submission_rate,
        "average_time_spent": average_time_spent,
    }

    await db.assignments.update_one(
        {"assignment_id": assignment_id},
        {"$set": {"statistics": statistics}}
    )
    logger.info("Statistics refreshed for assignment %s", assignment_id)
    return statistics
