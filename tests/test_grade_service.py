"""Tests for grade issuing, adjustment and the grade/submission link."""
import pytest
import pytest_asyncio
from pymongo.errors import PyMongoError

from gradeflow.common.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from gradeflow.grades import grade_service as service

from conftest import COURSE_ID, OTHER_STUDENT_ID, STUDENT_ID


@pytest.fixture
def graded(db, teacher, make_assignment, make_submission):
    """Create an assignment, a submission and a grade for it"""
    async def _make(raw=80, status="published", **grade_kwargs):
        assignment = await make_assignment()
        submission = await make_submission(assignment)
        grade = await service.create_grade(
            db, teacher,
            student_id=STUDENT_ID,
            assignment_id=assignment.assignment_id,
            submission_id=submission.submission_id,
            scores={"raw": raw},
            status=status,
            **grade_kwargs
        )
        return assignment, submission, grade
    return _make


class TestCreateGrade:
    @pytest.mark.asyncio
    async def test_create_links_submission(self, db, graded):
        assignment, submission, grade = await graded(raw=85)

        assert grade["scores"]["percentage"] == 85
        assert grade["letter_grade"] == "B"
        assert grade["grade_points"] == 3.0
        assert grade["grade_id"].startswith("GRD_")

        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["status"] == "graded"
        assert stored["grade_id"] == grade["grade_id"]
        assert stored["grading"]["letter_grade"] == "B"

        stats = (await db.assignments.find_one({"assignment_id": assignment.assignment_id}))["statistics"]
        assert stats["total_graded"] == 1
        assert stats["average_grade"] == 85

        audit = await db.audit_logs.find_one({"action": "create_grade"})
        assert audit["target_id"] == grade["grade_id"]

    @pytest.mark.asyncio
    async def test_one_grade_per_student_and_assignment(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment(attempts={"allowed": 2})
        first = await make_submission(assignment)
        second = await make_submission(assignment, attempt_number=2)

        await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                   first.submission_id, {"raw": 70})
        with pytest.raises(Conflict):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       second.submission_id, {"raw": 90})
        assert await db.grades.count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_grade_conflicts(self, db, teacher, make_assignment, make_submission, monkeypatch):
        assignment = await make_assignment(attempts={"allowed": 2})
        first = await make_submission(assignment)
        second = await make_submission(assignment, attempt_number=2)
        await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                   first.submission_id, {"raw": 70})

        async def not_seen_yet(*args, **kwargs):
            return None
        monkeypatch.setattr(service, "_find_existing_grade", not_seen_yet)

        with pytest.raises(Conflict):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       second.submission_id, {"raw": 90})

        assert await db.grades.count_documents({"student_id": STUDENT_ID}) == 1
        stored = await db.submissions.find_one({"submission_id": second.submission_id})
        assert stored["status"] == "submitted"
        assert stored["grade_id"] is None

    @pytest.mark.asyncio
    async def test_fractional_max_grade(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment(max_grade=0.5)
        submission = await make_submission(assignment)

        grade = await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                           submission.submission_id, {"raw": 0.5})

        assert grade["scores"]["points"]["possible"] == 0.5
        assert grade["scores"]["percentage"] == 100
        assert grade["letter_grade"] == "A+"

    @pytest.mark.asyncio
    async def test_only_owning_instructor(self, db, other_teacher, admin, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(assignment)

        with pytest.raises(Forbidden):
            await service.create_grade(db, other_teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id, {"raw": 50})

        grade = await service.create_grade(db, admin, STUDENT_ID, assignment.assignment_id,
                                           submission.submission_id, {"raw": 50})
        assert grade["letter_grade"] == "F"

    @pytest.mark.asyncio
    async def test_missing_submission(self, db, teacher, make_assignment):
        assignment = await make_assignment()
        with pytest.raises(NotFound):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       "SUB_MISSING", {"raw": 50})

    @pytest.mark.asyncio
    async def test_submission_of_another_student(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(assignment, OTHER_STUDENT_ID)
        with pytest.raises(ValidationFailed):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id, {"raw": 50})

    @pytest.mark.asyncio
    async def test_earned_over_possible(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(assignment)
        with pytest.raises(ValidationFailed):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id,
                                       {"raw": 30, "points": {"earned": 30, "possible": 20}})

    @pytest.mark.asyncio
    async def test_draft_submission_not_gradable(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(assignment, status="draft")
        with pytest.raises(InvalidState):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id, {"raw": 50})

    @pytest.mark.asyncio
    async def test_attempt_over_limit(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(assignment, attempt_number=2)
        with pytest.raises(InvalidState):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id, {"raw": 50})

    @pytest.mark.asyncio
    async def test_explicit_letter_override(self, graded):
        _, _, grade = await graded(raw=88, letter_grade="A-")
        assert grade["letter_grade"] == "A-"
        assert grade["grade_points"] == 3.7

    @pytest.mark.asyncio
    async def test_instructor_grade_supersedes_auto_grade(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        submission = await make_submission(
            assignment, status="graded",
            grading={"is_graded": True, "auto_graded": True, "raw_score": 60, "max_score": 100}
        )

        await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                   submission.submission_id, {"raw": 75})

        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert not stored["grading"]["auto_graded"]
        assert stored["grading"]["raw_score"] == 75
        assert stored["grading"]["letter_grade"] == "C"


class TestCompensation:
    @pytest.mark.asyncio
    async def test_failed_link_removes_grade(self, db, teacher, make_assignment, make_submission, monkeypatch):
        assignment = await make_assignment()
        submission = await make_submission(assignment)

        async def broken_save(*args, **kwargs):
            raise PyMongoError("write failed")
        monkeypatch.setattr(service, "save_submission", broken_save)

        with pytest.raises(PyMongoError):
            await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                       submission.submission_id, {"raw": 90})

        assert await db.grades.count_documents({}) == 0
        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["status"] == "submitted"
        assert stored["grade_id"] is None

    @pytest.mark.asyncio
    async def test_failed_revert_restores_grade(self, db, teacher, graded, monkeypatch):
        _, _, grade = await graded()

        async def broken_save(*args, **kwargs):
            raise PyMongoError("write failed")
        monkeypatch.setattr(service, "save_submission", broken_save)

        with pytest.raises(PyMongoError):
            await service.delete_grade(db, grade["grade_id"], teacher)

        assert await db.grades.count_documents({"grade_id": grade["grade_id"]}) == 1

    @pytest.mark.asyncio
    async def test_statistics_failure_is_tolerated(self, db, teacher, make_assignment, make_submission,
                                                   monkeypatch):
        assignment = await make_assignment()
        submission = await make_submission(assignment)

        async def broken_refresh(*args, **kwargs):
            raise PyMongoError("statistics unavailable")
        monkeypatch.setattr(service, "refresh_grade_statistics", broken_refresh)

        grade = await service.create_grade(db, teacher, STUDENT_ID, assignment.assignment_id,
                                           submission.submission_id, {"raw": 90})

        assert grade["letter_grade"] == "A-"
        assert await db.grades.count_documents({}) == 1


class TestUpdateAndDelete:
    @pytest.mark.asyncio
    async def test_rescore(self, db, teacher, graded):
        _, submission, grade = await graded(raw=80)

        updated = await service.update_grade(db, grade["grade_id"], teacher, {"scores": {"raw": 91}})

        assert updated["scores"]["percentage"] == 91
        assert updated["letter_grade"] == "A-"
        assert updated["analytics"]["revision_count"] == 1
        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["grading"]["raw_score"] == 91

    @pytest.mark.asyncio
    async def test_returned_status_follows_submission(self, db, teacher, graded):
        _, submission, grade = await graded()

        await service.update_grade(db, grade["grade_id"], teacher, {"status": "returned"})
        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["status"] == "returned"

        await service.update_grade(db, grade["grade_id"], teacher, {"status": "published"})
        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["status"] == "graded"

    @pytest.mark.asyncio
    async def test_final_grade_is_frozen(self, db, teacher, graded):
        _, _, grade = await graded()
        await service.update_grade(db, grade["grade_id"], teacher, {"status": "final"})

        with pytest.raises(InvalidState):
            await service.update_grade(db, grade["grade_id"], teacher, {"scores": {"raw": 99}})
        with pytest.raises(InvalidState):
            await service.add_bonus(db, grade["grade_id"], teacher, {"type": "early", "points_added": 5})

    @pytest.mark.asyncio
    async def test_unknown_letter_rejected(self, db, teacher, graded):
        _, _, grade = await graded()
        with pytest.raises(ValidationFailed):
            await service.update_grade(db, grade["grade_id"], teacher, {"letter_grade": "E"})

    @pytest.mark.asyncio
    async def test_delete_reverts_submission(self, db, teacher, graded):
        assignment, submission, grade = await graded()

        await service.delete_grade(db, grade["grade_id"], teacher)

        assert await db.grades.count_documents({}) == 0
        stored = await db.submissions.find_one({"submission_id": submission.submission_id})
        assert stored["status"] == "submitted"
        assert stored["grade_id"] is None
        assert not stored["grading"]["is_graded"]
        assert stored["history"][-1]["action"] == "ungraded"

        stats = (await db.assignments.find_one({"assignment_id": assignment.assignment_id}))["statistics"]
        assert stats["total_graded"] == 0
        assert stats["average_grade"] == 0


class TestAdjustments:
    @pytest.mark.asyncio
    async def test_penalty_lowers_letter(self, db, teacher, graded):
        _, _, grade = await graded(raw=80)
        assert grade["letter_grade"] == "B-"

        updated = await service.add_penalty(db, grade["grade_id"], teacher, {
            "type": "late", "description": "Two days late", "points_deducted": 10
        })

        assert updated["scores"]["adjusted"] == 70
        assert updated["scores"]["percentage"] == 70
        assert updated["letter_grade"] == "C-"

    @pytest.mark.asyncio
    async def test_letter_override_rejected_while_adjusted(self, db, teacher, graded):
        _, _, grade = await graded(raw=80)
        await service.add_penalty(db, grade["grade_id"], teacher, {"type": "late", "points_deducted": 10})

        with pytest.raises(ValidationFailed):
            await service.update_grade(db, grade["grade_id"], teacher, {"letter_grade": "A"})

        stored = await db.grades.find_one({"grade_id": grade["grade_id"]})
        assert stored["letter_grade"] == "C-"
        assert stored["analytics"]["revision_count"] == 1

    @pytest.mark.asyncio
    async def test_bonus_capped_at_possible(self, db, teacher, graded):
        _, _, grade = await graded(raw=95)

        updated = await service.add_bonus(db, grade["grade_id"], teacher, {
            "type": "extra-credit", "points_added": 10
        })

        assert updated["scores"]["adjusted"] == 100
        assert updated["letter_grade"] == "A+"
        assert len(updated["bonuses"]) == 1


class TestAuditHistory:
    @pytest.mark.asyncio
    async def test_history_lists_grade_actions(self, db, teacher, other_teacher, graded):
        _, _, grade = await graded()
        await service.add_penalty(db, grade["grade_id"], teacher, {"type": "format", "points_deducted": 2})

        history = await service.get_grade_history(db, grade["grade_id"], teacher)

        assert sorted(entry["action"] for entry in history) == ["add_penalty", "create_grade"]
        with pytest.raises(Forbidden):
            await service.get_grade_history(db, grade["grade_id"], other_teacher)

    @pytest.mark.asyncio
    async def test_admin_reads_history_of_deleted_grade(self, db, teacher, admin, graded):
        _, _, grade = await graded()
        await service.delete_grade(db, grade["grade_id"], teacher)

        history = await service.get_grade_history(db, grade["grade_id"], admin)

        assert "delete_grade" in {entry["action"] for entry in history}
        with pytest.raises(NotFound):
            await service.get_grade_history(db, grade["grade_id"], teacher)


class TestStudentInteraction:
    @pytest.mark.asyncio
    async def test_draft_hidden_from_student(self, db, student, teacher, graded):
        _, _, grade = await graded(status="draft")

        with pytest.raises(NotFound):
            await service.get_grade(db, grade["grade_id"], student)
        assert (await service.list_student_grades(db, STUDENT_ID, student))["grades"] == []
        assert (await service.get_grade(db, grade["grade_id"], teacher))["status"] == "draft"

    @pytest.mark.asyncio
    async def test_student_view_hides_private_notes(self, db, student, teacher, graded):
        _, _, grade = await graded(feedback={"overall": "Solid work", "private": "Check for copying"})
        await service.add_comment(db, grade["grade_id"], teacher, "Staff only", is_private=True)

        view = await service.get_grade(db, grade["grade_id"], student)

        assert view["feedback"]["overall"] == "Solid work"
        assert "private" not in view["feedback"]
        assert view["comments"] == []

    @pytest.mark.asyncio
    async def test_other_student_cannot_list(self, db, other_student):
        with pytest.raises(Forbidden):
            await service.list_student_grades(db, STUDENT_ID, other_student)

    @pytest.mark.asyncio
    async def test_mark_viewed_counts(self, db, student, graded):
        _, _, grade = await graded()

        await service.mark_viewed(db, grade["grade_id"], student)
        view = await service.mark_viewed(db, grade["grade_id"], student)

        assert view["analytics"]["student_view_count"] == 2
        assert view["timeline"]["viewed_by_student_at"] is not None

    @pytest.mark.asyncio
    async def test_dispute_comment(self, db, student, graded):
        _, _, grade = await graded()

        view = await service.add_comment(db, grade["grade_id"], student, "Question 3 was marked wrong",
                                         comment_type="dispute")

        assert view["status"] == "disputed"
        assert view["flags"]["is_disputed"]
        assert view["flags"]["has_comments"]


class TestBulkAndQueries:
    @pytest.mark.asyncio
    async def test_bulk_reports_failures_per_item(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        first = await make_submission(assignment)
        second = await make_submission(assignment, OTHER_STUDENT_ID)

        result = await service.bulk_create_grades(db, teacher, assignment.assignment_id, [
            {"student_id": STUDENT_ID, "submission_id": first.submission_id, "scores": {"raw": 92}},
            {"student_id": OTHER_STUDENT_ID, "submission_id": second.submission_id, "scores": {"raw": 64}},
            {"student_id": STUDENT_ID, "submission_id": first.submission_id, "scores": {"raw": 50}},
            {"student_id": "USR_STUDENT_3", "submission_id": "SUB_MISSING", "scores": {"raw": 50}},
        ])

        assert len(result["created"]) == 2
        assert [e["status_code"] for e in result["errors"]] == [409, 404]

        stats = (await db.assignments.find_one({"assignment_id": assignment.assignment_id}))["statistics"]
        assert stats["total_graded"] == 2
        assert stats["average_grade"] == 78

    @pytest.mark.asyncio
    async def test_assignment_grades_summary(self, db, teacher, make_assignment, make_submission):
        assignment = await make_assignment()
        for student_id, raw in ((STUDENT_ID, 95), (OTHER_STUDENT_ID, 55)):
            submission = await make_submission(assignment, student_id)
            await service.create_grade(db, teacher, student_id, assignment.assignment_id,
                                       submission.submission_id, {"raw": raw})

        result = await service.list_assignment_grades(db, assignment.assignment_id, teacher)

        assert [g["scores"]["percentage"] for g in result["grades"]] == [95, 55]
        assert result["statistics"]["highest_grade"] == 95
        assert result["statistics"]["lowest_grade"] == 55
        assert result["distribution"] == {"A": 1, "B": 0, "C": 0, "D": 0, "F": 1}

    @pytest.mark.asyncio
    async def test_student_grades_with_statistics(self, db, student, teacher, graded):
        await graded(raw=95)
        await graded(raw=85)
        await graded(raw=40, status="draft")

        own = await service.list_student_grades(db, STUDENT_ID, student)

        assert own["student_id"] == STUDENT_ID
        assert len(own["grades"]) == 2
        assert own["statistics"] == {
            "total_graded": 2,
            "average_grade": 90,
            "highest_grade": 95,
            "lowest_grade": 85,
            "distribution": {"A": 1, "B": 1, "C": 0, "D": 0, "F": 0},
        }

        staff = await service.list_student_grades(db, STUDENT_ID, teacher)
        assert staff["statistics"]["total_graded"] == 3
        assert staff["statistics"]["lowest_grade"] == 40
        assert staff["statistics"]["distribution"]["F"] == 1


@pytest_asyncio.fixture
async def course_grades(db, teacher, graded, make_assignment, make_submission):
    """Two released grades for the student and a draft for a classmate"""
    await graded(raw=95)
    await graded(raw=85)
    assignment = await make_assignment()
    submission = await make_submission(assignment, OTHER_STUDENT_ID)
    await service.create_grade(db, teacher, OTHER_STUDENT_ID, assignment.assignment_id,
                               submission.submission_id, {"raw": 55}, status="draft")


class TestCourseGrades:
    @pytest.mark.asyncio
    async def test_instructor_sees_course(self, db, roster, teacher, admin, other_teacher, course_grades):
        result = await service.list_course_grades(db, roster, COURSE_ID, teacher)

        assert result["course_id"] == COURSE_ID
        assert len(result["grades"]) == 3
        assert result["average"]["total_grades"] == 3
        assert result["average"]["average_percentage"] == pytest.approx(78.33, abs=0.01)
        assert result["average"]["average_grade_points"] == pytest.approx(2.33, abs=0.01)
        assert result["letter_distribution"] == {"A": 1, "B": 1, "F": 1}

        assert len((await service.list_course_grades(db, roster, COURSE_ID, admin))["grades"]) == 3
        assert (await service.list_course_grades(db, roster, COURSE_ID, other_teacher))["grades"] == []

    @pytest.mark.asyncio
    async def test_student_sees_own_released_grades(self, db, roster, student, other_student, course_grades):
        own = await service.list_course_grades(db, roster, COURSE_ID, student)

        assert {g["student_id"] for g in own["grades"]} == {STUDENT_ID}
        assert own["average"] == {"total_grades": 2, "average_percentage": 90, "average_grade_points": 3.5}
        assert own["letter_distribution"] == {"A": 1, "B": 1}

        # the other student's only grade is still a draft
        hidden = await service.list_course_grades(db, roster, COURSE_ID, other_student)
        assert hidden["grades"] == []
        assert hidden["average"]["total_grades"] == 0

    @pytest.mark.asyncio
    async def test_course_access_errors(self, db, roster, outsider, student):
        with pytest.raises(Forbidden):
            await service.list_course_grades(db, roster, COURSE_ID, outsider)
        with pytest.raises(NotFound):
            await service.list_course_grades(db, roster, "CRS_MISSING", student)
