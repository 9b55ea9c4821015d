from __future__ import annotations

import io
import os
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import patch

from flask import render_template_string

from research_portal import create_app
from research_portal.demo_accounts import STUDENT_EMAIL, seed_demo_accounts


def _environ(data_dir: str) -> dict:
    return {
        "SUPABASE_URL": "",
        "NEXT_PUBLIC_SUPABASE_URL": "",
        "SUPABASE_PROJECT_URL": "",
        "UPSTASH_REDIS_URL": "",
        "SUPABASE_DB_POOL_URL": "",
        "DATABASE_URL": "",
        "VERCEL": "",
        "VERCEL_ENV": "",
        "FLASK_ENV": "development",
        "FLASK_SECRET_KEY": "testing-secret",
        "STORAGE_DATA_DIR": str(Path(data_dir, "data")),
        "SESSION_FILE_DIR": str(Path(data_dir, "sessions")),
    }


class PageRouteTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.env_patch = patch.dict(os.environ, _environ(self.tmpdir.name), clear=False)
        self.env_patch.start()
        self.addCleanup(self.env_patch.stop)

        self.app = create_app()
        self.app.testing = True
        self.client = self.app.test_client()
        self.storage = self.app.storage_service

        self.teacher = self.storage.upsert_user(
            {"email": "teacher@example.com", "name": "Dr. Rao", "role": "teacher", "department": "CSE"}
        )
        self.student = self.storage.upsert_user(
            {"email": "student@example.com", "name": "Asha", "role": "student"}
        )

    def _login_as(self, user: dict) -> None:
        with self.client.session_transaction() as session:
            session["user"] = {
                "id": user["id"],
                "email": user["email"],
                "name": user["name"],
                "role": user["role"],
            }

    def _project(self, **overrides) -> dict:
        record = {
            "title": "Federated learning",
            "description": "Privacy preserving ML",
            "status": "active",
            "author_id": self.teacher["id"],
            "author_email": self.teacher["email"],
            "author_name": self.teacher["name"],
            "tags": ["ml"],
        }
        record.update(overrides)
        return self.storage.create_project(record)

    def _post(self, **overrides) -> dict:
        record = {
            "title": "Inside the lab",
            "content": "We <b>build</b> things.\n\nEvery week.",
            "excerpt": "We build things.",
            "author_id": self.teacher["id"],
            "author_name": self.teacher["name"],
            "published": True,
            "tags": ["lab"],
            "read_time": 1,
        }
        record.update(overrides)
        return self.storage.create_blog_post(record)

    def test_landing_page_renders_sections(self) -> None:
        self._project()
        self._post()

        response = self.client.get("/")

        self.assertEqual(200, response.status_code)
        body = response.get_data(as_text=True)
        for section in ('id="features"', 'id="opportunities"', 'id="statistics"', 'id="blog"', 'id="team"'):
            self.assertIn(section, body)
        self.assertIn("Federated learning", body)
        self.assertIn("Inside the lab", body)

    def test_nav_item_marks_current_path_active(self) -> None:
        body = self.client.get("/projects").get_data(as_text=True)

        self.assertEqual(1, body.count("nav-item--active"))
        self.assertRegex(body, r'<a href="/projects"\s+class="nav-item nav-item--active"')

    def test_nav_item_explicit_active_flag(self) -> None:
        template = '{% from "_macros.html" import nav_item %}{{ nav_item("/blog", "Blog", active=true) }}'
        with self.app.test_request_context("/elsewhere"):
            explicit = render_template_string(template)
            implicit = render_template_string(template.replace(", active=true", ""))

        self.assertIn("nav-item--active", explicit)
        self.assertNotIn("nav-item--active", implicit)

    def test_login_with_seeded_account(self) -> None:
        seed_demo_accounts(self.storage)

        response = self.client.post(
            "/login?next=/projects",
            data={"email": STUDENT_EMAIL, "password": "TestStudent123!"},
        )

        self.assertEqual(302, response.status_code)
        self.assertTrue(response.headers["Location"].endswith("/projects"))
        with self.client.session_transaction() as session:
            self.assertEqual("student", session["user"]["role"])

    def test_login_rejects_bad_password(self) -> None:
        seed_demo_accounts(self.storage)

        response = self.client.post("/login", data={"email": STUDENT_EMAIL, "password": "nope"})

        self.assertEqual(200, response.status_code)
        self.assertIn("Invalid credentials.", response.get_data(as_text=True))

    def test_login_ignores_offsite_next(self) -> None:
        seed_demo_accounts(self.storage)

        response = self.client.post(
            "/login?next=//evil.example.com",
            data={"email": STUDENT_EMAIL, "password": "TestStudent123!"},
        )

        self.assertEqual("/", response.headers["Location"])

    def test_logout_clears_session(self) -> None:
        self._login_as(self.student)

        response = self.client.get("/logout")

        self.assertEqual(302, response.status_code)
        with self.client.session_transaction() as session:
            self.assertNotIn("user", session)

    def test_apply_requires_login(self) -> None:
        response = self.client.get("/apply?projectId=p-1")

        self.assertEqual(302, response.status_code)
        self.assertIn("/login", response.headers["Location"])

    def test_apply_is_for_students_only(self) -> None:
        self._login_as(self.teacher)

        response = self.client.get("/apply?projectId=p-1")

        self.assertEqual(302, response.status_code)
        self.assertIn("/login", response.headers["Location"])

    def test_apply_form_validation(self) -> None:
        project = self._project()
        self._login_as(self.student)
        url = f"/apply?projectId={project['id']}&project=Federated+learning"

        page = self.client.get(url)
        self.assertEqual(200, page.status_code)
        self.assertIn("Apply to Federated learning", page.get_data(as_text=True))

        incomplete = self.client.post(url, data={"name": "Asha"})
        self.assertIn("Please fill in all required fields", incomplete.get_data(as_text=True))

        form = {
            "name": "Asha",
            "phone": "+91-9000000000",
            "email": "student@example.com",
            "year": "3",
            "gpa": "8.7",
            "reason": "Curious about privacy",
            "resume_link": "https://www.dropbox.com/s/cv.pdf",
        }
        bad_link = self.client.post(url, data=form)
        self.assertIn(
            "Resume link must be a valid Google Drive or Google Docs link",
            bad_link.get_data(as_text=True),
        )
        self.assertEqual([], self.storage.list_applications())

    def test_apply_submits_application(self) -> None:
        project = self._project()
        self._login_as(self.student)
        form = {
            "name": "Asha",
            "phone": "+91-9000000000",
            "email": "student@example.com",
            "year": "3",
            "gpa": "8.7",
            "skills": "python, pytorch",
            "reason": "Curious about privacy",
            "resume_link": "https://drive.google.com/file/d/cv/view",
            "portfolio_link": "https://docs.google.com/document/d/portfolio",
        }

        response = self.client.post(f"/apply?projectId={project['id']}&project=Federated+learning", data=form)

        self.assertEqual(200, response.status_code)
        self.assertIn("Application submitted", response.get_data(as_text=True))
        applications = self.storage.list_applications(student_id=self.student["id"])
        self.assertEqual(1, len(applications))
        self.assertEqual(["python", "pytorch"], applications[0]["skills"])
        self.assertEqual(8.7, applications[0]["student_gpa"])
        self.assertIn("Portfolio: https://docs.google.com/document/d/portfolio", applications[0]["cover_letter"])

        again = self.client.post(f"/apply?projectId={project['id']}", data=form)
        self.assertIn("You have already applied to this project", again.get_data(as_text=True))

    def test_blog_detail_renders_sanitized_markdown_and_counts_views(self) -> None:
        post = self._post(
            content="# Lab notes\n\nWe **build** [things](https://example.com/lab).\n\n<script>alert(1)</script>"
        )

        response = self.client.get(f"/blog/{post['id']}")

        self.assertEqual(200, response.status_code)
        body = response.get_data(as_text=True)
        self.assertIn("<h1>Lab notes</h1>", body)
        self.assertIn("<strong>build</strong>", body)
        self.assertIn('href="https://example.com/lab"', body)
        self.assertNotIn("<script>alert", body)
        self.assertNotIn("alert(1)", body)
        self.assertNotIn("Delete</button>", body)
        self.assertEqual(1, self.storage.get_blog_post(post["id"])["views"])

    def test_blog_detail_offers_edit_to_author(self) -> None:
        post = self._post()
        self._login_as(self.teacher)

        body = self.client.get(f"/blog/{post['id']}").get_data(as_text=True)

        self.assertIn(f"/blog/edit/{post['id']}", body)
        self.assertIn("Delete</button>", body)

    def test_missing_blog_post_renders_not_found(self) -> None:
        response = self.client.get("/blog/does-not-exist")

        self.assertEqual(404, response.status_code)
        self.assertIn("Blog Post Not Found", response.get_data(as_text=True))

    def test_edit_blog_post_is_limited_to_author(self) -> None:
        post = self._post()
        self._login_as(self.student)

        self.assertEqual(403, self.client.get(f"/blog/edit/{post['id']}").status_code)

    def test_edit_blog_post_generates_excerpt_without_saving(self) -> None:
        post = self._post()
        self._login_as(self.teacher)

        response = self.client.post(
            f"/blog/edit/{post['id']}",
            data={"title": "Inside the lab", "content": "**Fresh** words", "action": "generate_excerpt"},
        )

        self.assertEqual(200, response.status_code)
        self.assertIn("Fresh words</textarea>", response.get_data(as_text=True))
        self.assertEqual("We build things.", self.storage.get_blog_post(post["id"])["excerpt"])

    def test_edit_blog_post_saves_changes(self) -> None:
        post = self._post()
        self._login_as(self.teacher)

        response = self.client.post(
            f"/blog/edit/{post['id']}",
            data={"title": "Renamed", "content": " ".join(["word"] * 250), "tags": "lab, news", "action": "save"},
        )

        self.assertEqual(302, response.status_code)
        stored = self.storage.get_blog_post(post["id"])
        self.assertEqual("Renamed", stored["title"])
        self.assertEqual(2, stored["read_time"])
        self.assertEqual(["lab", "news"], stored["tags"])
        self.assertFalse(stored["published"])

    def test_delete_blog_post_from_page(self) -> None:
        post = self._post()
        self._login_as(self.teacher)

        response = self.client.post(f"/blog/{post['id']}/delete")

        self.assertEqual(302, response.status_code)
        self.assertIsNone(self.storage.get_blog_post(post["id"]))

    def test_edit_project_as_owner(self) -> None:
        project = self._project()
        self._login_as(self.teacher)

        page = self.client.get(f"/teacher/edit-post/{project['id']}")
        self.assertEqual(200, page.status_code)
        self.assertIn("Privacy preserving ML", page.get_data(as_text=True))

        response = self.client.post(
            f"/teacher/edit-post/{project['id']}",
            data={
                "title": "Federated learning at the edge",
                "description": "Privacy preserving ML",
                "requirements": "python, statistics",
                "max_students": "3",
                "status": "closed",
                "tags": "ml, edge",
            },
        )

        self.assertEqual(302, response.status_code)
        stored = self.storage.get_project(project["id"])
        self.assertEqual("Federated learning at the edge", stored["title"])
        self.assertEqual(["python", "statistics"], stored["requirements"])
        self.assertEqual(3, stored["max_students"])
        self.assertEqual("closed", stored["status"])

    def test_edit_project_rejects_bad_student_count(self) -> None:
        project = self._project()
        self._login_as(self.teacher)

        response = self.client.post(
            f"/teacher/edit-post/{project['id']}",
            data={"title": "x", "description": "y", "max_students": "0", "status": "active"},
        )

        self.assertIn("Maximum students must be at least 1", response.get_data(as_text=True))

    def test_edit_project_requires_teacher(self) -> None:
        project = self._project()
        self._login_as(self.student)

        response = self.client.get(f"/teacher/edit-post/{project['id']}")

        self.assertEqual(302, response.status_code)
        self.assertEqual("/", response.headers["Location"])

    def _application_form(self, **overrides) -> dict:
        form = {
            "name": "Asha",
            "phone": "+91-9000000000",
            "email": "student@example.com",
            "year": "3",
            "gpa": "8.7",
            "reason": "Curious about privacy",
        }
        form.update(overrides)
        return form

    def test_apply_rejects_gpa_outside_ten_point_scale(self) -> None:
        project = self._project()
        self._login_as(self.student)
        url = f"/apply?projectId={project['id']}"

        for value in ("nan", "inf", "-1", "11"):
            with self.subTest(gpa=value):
                body = self.client.post(url, data=self._application_form(gpa=value)).get_data(as_text=True)
                self.assertIn("GPA must be between 0 and 10", body)
        not_number = self.client.post(url, data=self._application_form(gpa="eight"))
        self.assertIn("GPA must be a number", not_number.get_data(as_text=True))
        self.assertEqual([], self.storage.list_applications())

    def test_apply_keeps_zero_gpa(self) -> None:
        project = self._project()
        self._login_as(self.student)

        response = self.client.post(f"/apply?projectId={project['id']}", data=self._application_form(gpa="0"))

        self.assertIn("Application submitted", response.get_data(as_text=True))
        self.assertEqual(0.0, self.storage.list_applications()[0]["student_gpa"])

    def test_register_creates_account_that_can_log_in(self) -> None:
        self.assertEqual(200, self.client.get("/register").status_code)

        response = self.client.post(
            "/register",
            data={
                "name": "Meera",
                "email": "Meera@IIITKottayam.ac.in",
                "role": "student",
                "password": "Research1",
                "confirm_password": "Research1",
            },
        )

        self.assertEqual(302, response.status_code)
        self.assertTrue(response.headers["Location"].endswith("/login"))
        stored = self.storage.find_users_by_email(["meera@iiitkottayam.ac.in"])
        self.assertEqual("student", stored[0]["role"])

        login = self.client.post("/login", data={"email": "meera@iiitkottayam.ac.in", "password": "Research1"})
        self.assertEqual("/", login.headers["Location"])

    def test_register_reports_validation_errors(self) -> None:
        form = {
            "name": "Dr. Nair",
            "email": "nair@gmail.com",
            "role": "teacher",
            "password": "Research1",
            "confirm_password": "Research1",
        }

        outsider = self.client.post("/register", data=form).get_data(as_text=True)
        self.assertIn("Only @iiitkottayam.ac.in email addresses are allowed", outsider)

        form["email"] = "nair@iiitkottayam.ac.in"
        no_department = self.client.post("/register", data=form).get_data(as_text=True)
        self.assertIn("Department is required for teachers", no_department)
        self.assertIn('value="Dr. Nair"', no_department)
        self.assertEqual([], self.storage.find_users_by_email(["nair@iiitkottayam.ac.in"]))

    def test_teacher_login_lands_on_dashboard(self) -> None:
        seed_demo_accounts(self.storage)

        response = self.client.post(
            "/login", data={"email": "teacher.test@iiitkottayam.ac.in", "password": "TestTeacher123!"}
        )

        self.assertEqual("/teacher", response.headers["Location"])

    def test_teacher_dashboard_summarises_posts(self) -> None:
        project = self._project(views=7)
        self._project(title="Old idea", status="closed", views=3)
        self.storage.create_application(
            {"project_id": project["id"], "student_id": self.student["id"], "teacher_id": self.teacher["id"],
             "status": "accepted"}
        )
        self._login_as(self.teacher)

        response = self.client.get("/teacher")

        self.assertEqual(200, response.status_code)
        body = response.get_data(as_text=True)
        self.assertRegex(body, r'stat__value">1</span><span class="stat__label">Active posts')
        self.assertRegex(body, r'stat__value">1</span><span class="stat__label">Accepted')
        self.assertRegex(body, r'stat__value">10</span><span class="stat__label">Total views')
        self.assertIn('href="/teacher/new-post"', body)

    def test_teacher_pages_turn_students_away(self) -> None:
        self._login_as(self.student)

        for url in ("/teacher", "/teacher/new-post", "/teacher/my-posts", "/teacher/applications"):
            with self.subTest(url=url):
                response = self.client.get(url)
                self.assertEqual(302, response.status_code)
                self.assertEqual("/", response.headers["Location"])

    def test_new_project_is_published_for_teacher(self) -> None:
        self._login_as(self.teacher)

        page = self.client.get("/teacher/new-post")
        self.assertIn("New research post", page.get_data(as_text=True))

        response = self.client.post(
            "/teacher/new-post",
            data={"title": "Quantum sensing", "description": "NV centres", "max_students": "2",
                  "status": "active", "tags": "physics"},
        )

        self.assertEqual(302, response.status_code)
        self.assertTrue(response.headers["Location"].endswith("/teacher/my-posts"))
        created = self.storage.list_projects(author=self.teacher["email"])
        self.assertEqual(["Quantum sensing"], [project["title"] for project in created])
        self.assertEqual("CSE", created[0]["department"])

    def test_my_posts_lists_counts_and_deletes(self) -> None:
        project = self._project()
        self.storage.create_application(
            {"project_id": project["id"], "student_id": self.student["id"], "teacher_id": self.teacher["id"],
             "status": "pending"}
        )
        self._login_as(self.teacher)

        body = self.client.get("/teacher/my-posts").get_data(as_text=True)
        self.assertIn("Federated learning", body)
        self.assertIn(f'/teacher/applications?postId={project["id"]}">1</a>', body)

        response = self.client.post(f"/teacher/my-posts/{project['id']}/delete")
        self.assertEqual(302, response.status_code)
        self.assertIsNone(self.storage.get_project(project["id"]))

    def test_teacher_reviews_applications(self) -> None:
        project = self._project()
        application = self.storage.create_application(
            {"project_id": project["id"], "project_title": project["title"], "student_id": self.student["id"],
             "student_name": "Asha", "teacher_id": self.teacher["id"], "status": "pending", "student_gpa": 8.7}
        )
        self._login_as(self.teacher)

        body = self.client.get(f"/teacher/applications?postId={project['id']}").get_data(as_text=True)
        self.assertIn("Asha", body)
        self.assertIn(">Accept</button>", body)

        response = self.client.post(
            f"/teacher/applications/{application['id']}/status", data={"status": "accepted"}
        )
        self.assertEqual(302, response.status_code)
        self.assertEqual("accepted", self.storage.get_application(application["id"])["status"])

        invalid = self.client.post(f"/teacher/applications/{application['id']}/status", data={"status": "maybe"})
        self.assertEqual(302, invalid.status_code)
        self.assertEqual("accepted", self.storage.get_application(application["id"])["status"])

    def test_teacher_downloads_uploaded_resume(self) -> None:
        project = self._project()
        resume_url = self.storage.upload_file(
            "resumes", f"{self.student['id']}/resume-1-cv.pdf", b"%PDF-1.4 cv", "application/pdf"
        )
        application = self.storage.create_application(
            {"project_id": project["id"], "student_id": self.student["id"], "teacher_id": self.teacher["id"],
             "status": "pending", "resume_url": resume_url}
        )
        self._login_as(self.teacher)

        listing = self.client.get("/teacher/applications").get_data(as_text=True)
        self.assertIn(f"/teacher/applications/{application['id']}/resume", listing)

        response = self.client.get(f"/teacher/applications/{application['id']}/resume")
        self.assertEqual(200, response.status_code)
        self.assertEqual(b"%PDF-1.4 cv", response.data)
        self.assertIn("resume-1-cv.pdf", response.headers["Content-Disposition"])

    def test_my_applications_shows_status(self) -> None:
        project = self._project()
        self.storage.create_application(
            {"project_id": project["id"], "project_title": project["title"], "student_id": self.student["id"],
             "teacher_id": self.teacher["id"], "status": "rejected"}
        )
        self._login_as(self.student)

        body = self.client.get("/my-applications").get_data(as_text=True)

        self.assertIn("Federated learning", body)
        self.assertIn("status--rejected", body)
        self.assertIn('href="/my-applications"', body)

    def test_new_blog_post_with_pdf_attachment(self) -> None:
        self._login_as(self.teacher)

        page = self.client.get("/blog/new")
        self.assertIn('enctype="multipart/form-data"', page.get_data(as_text=True))

        response = self.client.post(
            "/blog/new",
            data={
                "title": "Notes from the lab",
                "content": "## Week one\n\nWe started.",
                "tags": "lab",
                "published": "1",
                "action": "save",
                "pdf": (io.BytesIO(b"%PDF-1.4 slides"), "slides.pdf", "application/pdf"),
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(302, response.status_code)
        post = self.storage.list_blog_posts()[0]
        self.assertEqual("Notes from the lab", post["title"])
        self.assertEqual("Week one We started.", post["excerpt"])
        self.assertTrue(post["pdf_url"].startswith(f"/uploads/blog-pdfs/{self.teacher['id']}/"))
        self.assertEqual(b"%PDF-1.4 slides", self.client.get(post["pdf_url"]).data)

    def test_new_blog_post_rejects_non_pdf_attachment(self) -> None:
        self._login_as(self.student)

        response = self.client.post(
            "/blog/new",
            data={
                "title": "Notes",
                "content": "Body",
                "action": "save",
                "pdf": (io.BytesIO(b"plain"), "notes.txt", "text/plain"),
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(200, response.status_code)
        self.assertIn("Only PDF files are allowed", response.get_data(as_text=True))
        self.assertEqual([], self.storage.list_blog_posts(include_unpublished=True))
