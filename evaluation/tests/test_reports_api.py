from django.test import TestCase
from rest_framework.test import APIClient

from evaluation.models import TermApproval
from evaluation.services.aggregator import ItemScore, summarize
from evaluation.services.approval import get_approval, toggle_approval
from evaluation.services.grading_scale import assign_grading_scheme, create_grading_scheme
from evaluation.services.reports import overall_figures
from evaluation.services.weights import SOURCE_SUBJECT_DEFAULT, WeightResolution, set_term_weight
from evaluation.tests.helpers import PASS_FAIL, add_item, grade, make_school, make_student, make_subject, make_user
from schools.models import GradedItem

A, E = GradedItem.ASSIGNMENT, GradedItem.EXAM


class ApprovalServiceTests(TestCase):
    def setUp(self):
        _, self.klass, _ = make_school()
        self.admin = make_user("admin", is_superuser=True)

    def test_defaults_to_unapproved(self):
        self.assertFalse(get_approval(self.klass.id, "FIRST").is_approved)

    def test_toggle_is_idempotent(self):
        first = toggle_approval(self.klass.id, "FIRST", True, acting_user_id=self.admin.id)
        again = toggle_approval(self.klass.id, "FIRST", True, acting_user_id=self.admin.id)
        self.assertEqual(first.approved_at, again.approved_at)
        self.assertEqual(TermApproval.objects.count(), 1)

        revoked = toggle_approval(self.klass.id, "FIRST", False, acting_user_id=self.admin.id)
        self.assertFalse(revoked.is_approved)
        self.assertIsNone(revoked.approved_by)
        self.assertIsNone(revoked.approved_at)


class TermReportApiTests(TestCase):
    def setUp(self):
        self.school, self.klass, _ = make_school()
        self.math = make_subject(self.school, name="Math", assignment_weight=0.4, exam_weight=0.6)
        self.history = make_subject(self.school, name="History")
        self.art = make_subject(self.school, name="Art")

        self.student_user = make_user("eleve", role="student")
        self.student = make_student(self.klass, "M1", user=self.student_user)
        self.teacher = make_user("prof", role="teacher")
        self.klass.teachers.add(self.teacher)
        self.admin = make_user("admin", is_superuser=True)

        grade(add_item(self.math, self.klass, A, 20), self.student, 16)
        grade(add_item(self.math, self.klass, A, 20), self.student, 18)
        grade(add_item(self.math, self.klass, E, 100), self.student, 70)
        add_item(self.history, self.klass, E, 20)

        self.client = APIClient()
        self.url = f"/api/students/{self.student.id}/report/"

    def test_student_sees_pending_until_approved(self):
        self.client.force_authenticate(user=self.student_user)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["pending_approval"])
        self.assertEqual(resp.data["subjects"], [])

        toggle_approval(self.klass.id, "FIRST", True, acting_user_id=self.admin.id)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        self.assertFalse(resp.data["pending_approval"])
        self.assertEqual(len(resp.data["subjects"]), 2)

    def test_staff_bypass_the_gate(self):
        self.client.force_authenticate(user=self.teacher)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.data["pending_approval"])
        self.assertFalse(resp.data["approval"]["is_approved"])

        subjects = {s["subject_name"]: s for s in resp.data["subjects"]}
        self.assertEqual(set(subjects), {"Math", "History"})
        self.assertEqual(subjects["Math"]["final_percentage"], 76.0)
        self.assertEqual(subjects["Math"]["grade"], "B+")
        self.assertEqual(subjects["History"]["grade"], "Not Graded")
        self.assertIsNone(subjects["History"]["exam_average"])
        self.assertEqual(resp.data["overall_average"], 76.0)
        self.assertEqual(resp.data["graded_subjects"], 1)
        self.assertEqual(resp.data["total_subjects"], 2)

    def test_term_override_is_reported(self):
        self.client.force_authenticate(user=self.admin)
        resp = self.client.post(
            f"/api/subjects/{self.math.id}/term-weights/",
            {"term": "FIRST", "assignment_weight": 0.5, "exam_weight": 0.5},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get(self.url, {"term": "FIRST"})
        math = next(s for s in resp.data["subjects"] if s["subject_name"] == "Math")
        self.assertTrue(math["is_using_term_specific_weights"])
        self.assertEqual(math["final_percentage"], 77.5)

    def test_full_marks_with_weights_at_tolerance_edge(self):
        set_term_weight(self.art.id, "FIRST", 0.504, 0.505)
        grade(add_item(self.art, self.klass, A, 10), self.student, 10)
        grade(add_item(self.art, self.klass, E, 10), self.student, 10)
        self.client.force_authenticate(user=self.admin)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        art = next(s for s in resp.data["subjects"] if s["subject_name"] == "Art")
        self.assertEqual(art["final_percentage"], 100.0)
        self.assertEqual(art["grade"], "A+")

    def test_other_student_is_forbidden(self):
        intruder = make_user("autre", role="student")
        make_student(self.klass, "M2", user=intruder)
        self.client.force_authenticate(user=intruder)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data["error"]["code"], "FORBIDDEN")

    def test_parent_sees_child_report(self):
        parent = make_user("parent", role="parent")
        self.student.parent = parent
        self.student.save(update_fields=["parent"])
        self.client.force_authenticate(user=parent)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": self.klass.id})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["pending_approval"])

    def test_unknown_term_is_a_validation_error(self):
        self.client.force_authenticate(user=self.admin)
        resp = self.client.get(self.url, {"term": "T9", "class_id": self.klass.id})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"]["code"], "VALIDATION_ERROR")
        self.assertIn("generated_at", resp.data)

    def test_missing_class_is_not_found(self):
        self.client.force_authenticate(user=self.admin)
        resp = self.client.get(self.url, {"term": "FIRST", "class_id": 999})
        self.assertEqual(resp.status_code, 404)


class ApprovalApiTests(TestCase):
    def setUp(self):
        self.school, self.klass, _ = make_school()
        self.admin = make_user("admin", is_superuser=True)
        self.teacher = make_user("prof", role="teacher")
        self.client = APIClient()

    def test_only_admin_toggles(self):
        self.client.force_authenticate(user=self.teacher)
        resp = self.client.post(f"/api/classes/{self.klass.id}/approval/", {"term": "FIRST", "is_approved": True}, format="json")
        self.assertEqual(resp.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        resp = self.client.post(f"/api/classes/{self.klass.id}/approval/", {"term": "FIRST", "is_approved": True}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["is_approved"])
        self.assertEqual(resp.data["approved_by"], self.admin.id)

    def test_list_covers_every_class(self):
        toggle_approval(self.klass.id, "FIRST", True, acting_user_id=self.admin.id)
        self.client.force_authenticate(user=self.teacher)
        resp = self.client.get(f"/api/schools/{self.school.id}/approvals/", {"term": "FIRST"})
        self.assertEqual(resp.status_code, 200)
        states = {row["class_name"]: row["is_approved"] for row in resp.data["approvals"]}
        self.assertEqual(states, {"10A": True, "11A": False})


class ClassResultsAndSchemesApiTests(TestCase):
    def setUp(self):
        self.school, self.klass, _ = make_school()
        self.subject = make_subject(self.school, name="Math", assignment_weight=0.4, exam_weight=0.6)
        self.student = make_student(self.klass, "M1")
        grade(add_item(self.subject, self.klass, A, 20), self.student, 16)
        self.teacher = make_user("prof", role="teacher")
        self.admin = make_user("admin", is_superuser=True)
        self.client = APIClient()

    def test_class_results_require_class_rights(self):
        url = f"/api/classes/{self.klass.id}/subjects/{self.subject.id}/results/"
        self.client.force_authenticate(user=self.teacher)
        self.assertEqual(self.client.get(url, {"term": "FIRST"}).status_code, 403)

        self.klass.teachers.add(self.teacher)
        resp = self.client.get(url, {"term": "FIRST"})
        self.assertEqual(resp.status_code, 200)
        row = resp.data["results"][0]
        self.assertEqual(row["final_percentage"], 80.0)
        self.assertTrue(row["has_any_grades"])
        self.assertEqual(len(row["breakdown"]), 1)
        self.assertFalse(resp.data["is_using_term_specific_weights"])

    def test_create_and_assign_scheme(self):
        self.client.force_authenticate(user=self.admin)
        resp = self.client.post(
            "/api/grading-schemes/",
            {
                "school_id": self.school.id,
                "name": "Pass/Fail",
                "is_default": True,
                "bands": [
                    {"label": "Pass", "min_percentage": 50, "max_percentage": 100},
                    {"label": "Fail", "min_percentage": 0, "max_percentage": 50},
                ],
            },
            format="json",
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual([b["label"] for b in resp.data["bands"]], ["Pass", "Fail"])

        resp = self.client.put(
            f"/api/subjects/{self.subject.id}/grading-scheme/", {"scheme_id": resp.data["id"]}, format="json"
        )
        self.assertEqual(resp.status_code, 200)

        resp = self.client.get(f"/api/classes/{self.klass.id}/subjects/{self.subject.id}/results/", {"term": "FIRST"})
        self.assertEqual(resp.data["results"][0]["grade"], "Pass")

    def test_list_update_and_delete_schemes(self):
        scheme = create_grading_scheme(self.school.id, "Pass/Fail", PASS_FAIL)
        self.client.force_authenticate(user=self.teacher)
        resp = self.client.get("/api/grading-schemes/", {"school_id": self.school.id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([s["name"] for s in resp.data["schemes"]], ["Pass/Fail"])
        self.assertEqual(self.client.put(f"/api/grading-schemes/{scheme.id}/", {"name": "X"}, format="json").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        resp = self.client.put(
            f"/api/grading-schemes/{scheme.id}/",
            {"is_default": True, "bands": [{"label": "All", "min_percentage": 0, "max_percentage": 100}]},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["is_default"])
        self.assertEqual([b["label"] for b in resp.data["bands"]], ["All"])

        assign_grading_scheme(self.subject.id, scheme.id)
        resp = self.client.delete(f"/api/grading-schemes/{scheme.id}/")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"]["code"], "VALIDATION_ERROR")

        assign_grading_scheme(self.subject.id, None)
        self.assertEqual(self.client.delete(f"/api/grading-schemes/{scheme.id}/").status_code, 204)
        self.assertEqual(self.client.delete(f"/api/grading-schemes/{scheme.id}/").status_code, 404)

    def test_students_cannot_list_schemes(self):
        self.client.force_authenticate(user=make_user("eleve", role="student"))
        resp = self.client.get("/api/grading-schemes/", {"school_id": self.school.id})
        self.assertEqual(resp.status_code, 403)

    def test_teacher_cannot_create_scheme(self):
        self.client.force_authenticate(user=self.teacher)
        resp = self.client.post("/api/grading-schemes/", {"school_id": self.school.id, "name": "X", "bands": []}, format="json")
        self.assertEqual(resp.status_code, 403)

    def test_delete_missing_term_weight(self):
        self.client.force_authenticate(user=self.admin)
        resp = self.client.delete(f"/api/subjects/{self.subject.id}/term-weights/?term=FIRST")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data["error"]["code"], "NOT_FOUND")


class OverallFiguresTests(TestCase):
    weights = WeightResolution(1.0, 0.0, SOURCE_SUBJECT_DEFAULT)

    def setUp(self):
        self.school, _, _ = make_school()

    def _summary(self, score):
        return summarize([ItemScore(1, "hw", A, 1000, score)], self.weights)

    def test_average_is_rounded_once(self):
        # subject finals 2.004, 2.004, 2.004, 2.009 round to 2.0, 2.0, 2.0, 2.01
        summaries = [self._summary(20.04), self._summary(20.04), self._summary(20.04), self._summary(20.09)]
        figures = overall_figures(summaries, self.school.id)
        self.assertEqual(figures["overall_average"], 2.01)
        self.assertEqual(figures["graded_subjects"], 4)

    def test_ungraded_subjects_are_counted_but_not_averaged(self):
        figures = overall_figures([self._summary(850), self._summary(None)], self.school.id)
        self.assertEqual(figures["overall_average"], 85.0)
        self.assertEqual(figures["overall_grade"], "A")
        self.assertEqual(figures["total_subjects"], 2)
        self.assertEqual(figures["graded_subjects"], 1)
