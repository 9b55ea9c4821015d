"""Ownership, role and validation rules for portal content."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from werkzeug.utils import secure_filename

from ..utils.content import generate_excerpt, parse_gpa, read_time
from .storage_service import APPLICATION_STATUSES, PROJECT_STATUSES, StorageService

logger = logging.getLogger(__name__)

PROJECT_FIELDS = (
    'title', 'description', 'requirements', 'duration', 'location', 'max_students',
    'deadline', 'stipend', 'outcome', 'status', 'department', 'tags',
)
BLOG_FIELDS = ('title', 'content', 'excerpt', 'tags', 'published', 'pdf_url')
REGISTRATION_ROLES = ('student', 'teacher')
ALLOWED_EMAIL_DOMAIN = '@iiitkottayam.ac.in'
DEPARTMENTS = (
    'Computer Science & Engineering',
    'Electronics & Communication Engineering',
    'Mechanical Engineering',
    'Civil Engineering',
    'Mathematics',
    'Physics',
    'Chemistry',
    'Humanities & Social Sciences',
    'Management Studies',
    'Other',
)
RESUME_MAX_BYTES = 5 * 1024 * 1024
BLOG_PDF_MAX_BYTES = 10 * 1024 * 1024

_PASSWORD_RULES = (
    (re.compile(r'[a-z]'), 'Password must contain at least one lowercase letter'),
    (re.compile(r'[A-Z]'), 'Password must contain at least one uppercase letter'),
    (re.compile(r'\d'), 'Password must contain at least one number'),
)


@dataclass
class PortalError(Exception):
    """A request that breaks a portal rule, with the HTTP status to report."""

    message: str
    status_code: int = 400

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


def _as_list(value: Any) -> List[Any]:
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class PortalService:
    def __init__(self, storage: StorageService) -> None:
        self.storage = storage

    def require_profile(self, user_id: str) -> Dict[str, Any]:
        profile = self.storage.get_user(user_id)
        if not profile:
            raise PortalError('User profile not found', 404)
        return profile

    # --- Projects ----------------------------------------------------------

    def view_project(self, project_id: str) -> Dict[str, Any]:
        project = self.storage.get_project(project_id)
        if not project:
            raise PortalError('Project not found', 404)
        self.storage.increment_project_views(project)
        return project

    def create_project(self, profile: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        if profile.get('role') != 'teacher':
            raise PortalError('Only teachers can create projects', 403)

        status = payload.get('status') or 'draft'
        if status not in PROJECT_STATUSES:
            raise PortalError('Invalid status')
        if not (payload.get('title') or '').strip():
            raise PortalError('Title is required')

        record = {
            'title': payload.get('title'),
            'description': payload.get('description'),
            'requirements': _as_list(payload.get('requirements')),
            'duration': payload.get('duration'),
            'location': payload.get('location'),
            'max_students': payload.get('max_students') or 1,
            'deadline': payload.get('deadline'),
            'stipend': payload.get('stipend'),
            'outcome': payload.get('outcome') or None,
            'status': status,
            'author_id': profile['id'],
            'author_email': profile.get('email'),
            'author_name': profile.get('name'),
            'department': payload.get('department') or profile.get('department') or 'Unknown',
            'tags': _as_list(payload.get('tags')),
        }
        project = self.storage.create_project(record)
        logger.info('projects.created', extra={'project_id': project.get('id'), 'user_id': profile['id']})
        return project

    def update_project(self, user_id: str, project_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._owned('projects', self.storage.get_project(project_id), user_id, 'Project not found')

        changes = {field: payload[field] for field in PROJECT_FIELDS if field in payload}
        if 'status' in changes and changes['status'] not in PROJECT_STATUSES:
            raise PortalError('Invalid status')
        for field in ('requirements', 'tags'):
            if field in changes:
                changes[field] = _as_list(changes[field])
        if 'max_students' in changes:
            changes['max_students'] = changes['max_students'] or 1

        updated = self.storage.update_project(project_id, changes)
        if not updated:
            raise PortalError('Project not found', 404)
        return updated

    def delete_project(self, user_id: str, project_id: str) -> None:
        self._owned('projects', self.storage.get_project(project_id), user_id, 'Project not found')
        self.storage.delete_project(project_id)
        logger.info('projects.deleted', extra={'project_id': project_id, 'user_id': user_id})

    # --- Blog posts --------------------------------------------------------

    def view_blog_post(self, post_id: str) -> Dict[str, Any]:
        post = self.storage.get_blog_post(post_id)
        if not post:
            raise PortalError('Blog post not found', 404)
        self.storage.increment_blog_views(post)
        return post

    def create_blog_post(self, profile: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        title = (payload.get('title') or '').strip()
        content = payload.get('content') or ''
        if not title or not content.strip():
            raise PortalError('Title and content are required')

        record = {
            'title': title,
            'content': content,
            'excerpt': payload.get('excerpt') or generate_excerpt(content),
            'author_id': profile['id'],
            'author_email': profile.get('email'),
            'author_name': profile.get('name'),
            'tags': _as_list(payload.get('tags')),
            'published': bool(payload.get('published')),
            'read_time': read_time(content),
            'pdf_url': payload.get('pdf_url') or None,
        }
        post = self.storage.create_blog_post(record)
        logger.info('blog.created', extra={'post_id': post.get('id'), 'user_id': profile['id']})
        return post

    def update_blog_post(self, user_id: str, post_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._owned('blog_posts', self.storage.get_blog_post(post_id), user_id, 'Blog post not found')

        changes = {field: payload[field] for field in BLOG_FIELDS if field in payload}
        if 'content' in changes:
            if not (changes['content'] or '').strip():
                raise PortalError('Title and content are required')
            changes['read_time'] = read_time(changes['content'])
        if 'title' in changes and not (changes['title'] or '').strip():
            raise PortalError('Title and content are required')
        if 'tags' in changes:
            changes['tags'] = _as_list(changes['tags'])
        if 'published' in changes:
            changes['published'] = bool(changes['published'])
        if 'pdf_url' in changes:
            changes['pdf_url'] = changes['pdf_url'] or None

        updated = self.storage.update_blog_post(post_id, changes)
        if not updated:
            raise PortalError('Blog post not found', 404)
        return updated

    def delete_blog_post(self, user_id: str, post_id: str) -> None:
        post = self._owned('blog_posts', self.storage.get_blog_post(post_id), user_id, 'Blog post not found')
        if post.get('pdf_url'):
            self.storage.remove_file('blog-pdfs', user_id, post['pdf_url'])
        self.storage.delete_blog_post(post_id)
        logger.info('blog.deleted', extra={'post_id': post_id, 'user_id': user_id})

    # --- Applications ------------------------------------------------------

    def list_applications(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        student_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        profile = self.storage.get_user(user_id) or {}
        role = profile.get('role')
        if role == 'student':
            student_id = user_id
        elif not (project_id or student_id or teacher_id) and role == 'teacher':
            teacher_id = user_id
        return self.storage.list_applications(
            project_id=project_id,
            student_id=student_id,
            teacher_id=teacher_id,
            status=status,
        )

    def submit_application(self, profile: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        if profile.get('role') != 'student':
            raise PortalError('Only students can submit applications', 403)

        project_id = payload.get('project_id')
        project = self.storage.get_project(project_id) if project_id else None
        if not project:
            raise PortalError('Project not found', 404)
        if project.get('status') != 'active':
            raise PortalError('Project is not accepting applications')
        if self.storage.find_application(profile['id'], project_id):
            raise PortalError('You have already applied to this project')

        gpa = payload.get('student_gpa')
        if gpa is None:
            gpa = profile.get('gpa')
        try:
            gpa = parse_gpa(gpa) if gpa is not None else 0
        except ValueError as exc:
            raise PortalError(str(exc)) from exc

        record = {
            'student_id': profile['id'],
            'student_email': profile.get('email'),
            'student_name': payload.get('student_name') or profile.get('name'),
            'student_phone': payload.get('student_phone') or profile.get('phone') or '',
            'student_year': payload.get('student_year') or profile.get('year') or '',
            'student_gpa': gpa,
            'project_id': project_id,
            'project_title': project.get('title'),
            'teacher_id': project.get('author_id'),
            'teacher_email': project.get('author_email'),
            'cover_letter': payload.get('cover_letter'),
            'skills': _as_list(payload.get('skills')),
            'resume_url': payload.get('resume_url') or None,
            'status': 'pending',
        }
        application = self.storage.create_application(record)
        logger.info(
            'applications.created',
            extra={'application_id': application.get('id'), 'project_id': project_id, 'user_id': profile['id']},
        )
        return application

    def get_application_for(self, user_id: str, application_id: str) -> Dict[str, Any]:
        application = self.storage.get_application(application_id)
        if not application:
            raise PortalError('Application not found', 404)
        if user_id not in (application.get('student_id'), application.get('teacher_id')):
            raise PortalError('Forbidden', 403)
        return application

    def update_application_status(self, user_id: str, application_id: str, status: Any) -> Dict[str, Any]:
        if status not in APPLICATION_STATUSES:
            raise PortalError('Invalid status')

        application = self.storage.get_application(application_id)
        if not application:
            raise PortalError('Application not found', 404)
        if application.get('teacher_id') != user_id:
            raise PortalError('Only the project teacher can update application status', 403)

        updated = self.storage.update_application_status(application_id, status)
        if not updated:
            raise PortalError('Application not found', 404)
        return updated

    def withdraw_application(self, user_id: str, application_id: str) -> None:
        application = self.storage.get_application(application_id)
        if not application:
            raise PortalError('Application not found', 404)
        if application.get('student_id') != user_id:
            raise PortalError('Only the applicant can delete their application', 403)

        if application.get('resume_url'):
            self.storage.remove_file('resumes', user_id, application['resume_url'])
        self.storage.delete_application(application_id)

    # --- Accounts ----------------------------------------------------------

    def register(self, form: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a sign-up form and create the account with its profile."""

        email = (form.get('email') or '').strip().lower()
        password = form.get('password') or ''
        name = (form.get('name') or '').strip()
        role = form.get('role') or 'student'
        department = (form.get('department') or '').strip()

        if not email.endswith(ALLOWED_EMAIL_DOMAIN):
            raise PortalError(f'Only {ALLOWED_EMAIL_DOMAIN} email addresses are allowed')
        if password != form.get('confirm_password'):
            raise PortalError('Passwords do not match')
        if len(password) < 8:
            raise PortalError('Password must be at least 8 characters long')
        for pattern, message in _PASSWORD_RULES:
            if not pattern.search(password):
                raise PortalError(message)
        if not name:
            raise PortalError('Name is required')
        if role not in REGISTRATION_ROLES:
            raise PortalError('Invalid role')
        if role == 'teacher' and not department:
            raise PortalError('Department is required for teachers')
        if self.storage.find_users_by_email([email]):
            raise PortalError('An account with this email already exists')

        profile = {
            'name': name,
            'username': email.split('@')[0],
            'role': role,
            'department': department or None,
        }
        user = self.storage.create_account(email, password, profile)
        logger.info('auth.registered', extra={'user_id': user.get('id'), 'role': role})
        return user

    # --- Teacher dashboard -------------------------------------------------

    def teacher_projects(self, profile: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Every project the teacher authored, with its application count."""

        projects = self.storage.list_projects(status='all', author=profile.get('email'))
        counts: Dict[str, int] = {}
        for application in self.storage.list_applications(teacher_id=profile['id']):
            project_id = application.get('project_id')
            counts[project_id] = counts.get(project_id, 0) + 1
        return [dict(project, application_count=counts.get(project.get('id'), 0)) for project in projects]

    def teacher_overview(self, profile: Dict[str, Any]) -> Dict[str, int]:
        projects = self.storage.list_projects(status='all', author=profile.get('email'))
        applications = self.storage.list_applications(teacher_id=profile['id'])
        return {
            'active_posts': sum(1 for project in projects if project.get('status') == 'active'),
            'applications': len(applications),
            'accepted': sum(1 for application in applications if application.get('status') == 'accepted'),
            'total_views': sum(int(project.get('views') or 0) for project in projects),
        }

    # --- Files -------------------------------------------------------------

    def upload_resume(
        self, profile: Dict[str, Any], file_name: str, content_type: str, data: bytes
    ) -> Dict[str, str]:
        if profile.get('role') != 'student':
            raise PortalError('Only students can upload resumes', 403)
        self._check_pdf(content_type, data, RESUME_MAX_BYTES)
        stored_name = f'resume-{int(time.time() * 1000)}-{self._safe_name(file_name)}'
        url = self.storage.upload_file('resumes', f"{profile['id']}/{stored_name}", data, content_type)
        return {'url': url, 'fileName': stored_name}

    def upload_blog_pdf(
        self, profile: Dict[str, Any], file_name: str, content_type: str, data: bytes
    ) -> Dict[str, str]:
        self._check_pdf(content_type, data, BLOG_PDF_MAX_BYTES)
        stored_name = f'{int(time.time() * 1000)}-{self._safe_name(file_name)}'
        url = self.storage.upload_file('blog-pdfs', f"{profile['id']}/{stored_name}", data, content_type)
        return {'url': url, 'fileName': stored_name}

    def resume_for_download(self, user_id: str, application_id: str) -> Tuple[str, bytes]:
        """Return ``(file name, bytes)`` of an applicant's uploaded resume."""

        profile = self.storage.get_user(user_id)
        if not profile or profile.get('role') != 'teacher':
            raise PortalError('Only teachers can download resumes', 403)

        application = self.storage.get_application(application_id)
        if not application:
            raise PortalError('Application not found', 404)
        if application.get('teacher_id') != user_id:
            raise PortalError('You can only download resumes for your own projects', 403)
        if not application.get('resume_url'):
            raise PortalError('No resume file found for this application', 404)

        parts = application['resume_url'].split('/')
        if 'resumes' not in parts:
            raise PortalError('Invalid resume URL format')
        index = parts.index('resumes')
        if index + 2 >= len(parts):
            raise PortalError('Invalid resume URL format')
        path = '/'.join(parts[index + 1:])

        try:
            data = self.storage.download_file('resumes', path)
        except ValueError as exc:
            raise PortalError('Invalid resume URL format') from exc
        if not data:
            raise PortalError('Resume file not found', 404)
        return path.split('/')[-1] or 'resume.pdf', data

    # --- Private helpers -------------------------------------------------

    @staticmethod
    def _check_pdf(content_type: str, data: bytes, limit: int) -> None:
        if not data:
            raise PortalError('No file provided')
        if 'pdf' not in (content_type or ''):
            raise PortalError('Only PDF files are allowed')
        if len(data) > limit:
            raise PortalError(f'File size must be less than {limit // (1024 * 1024)}MB')

    @staticmethod
    def _safe_name(file_name: str) -> str:
        return secure_filename(file_name or '') or 'document.pdf'

    @staticmethod
    def _owned(table: str, row: Optional[Dict[str, Any]], user_id: str, missing: str) -> Dict[str, Any]:
        if not row:
            raise PortalError(missing, 404)
        if row.get('author_id') != user_id:
            logger.warning('%s.ownership_denied', table, extra={'row_id': row.get('id'), 'user_id': user_id})
            raise PortalError('Forbidden', 403)
        return row
