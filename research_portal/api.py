"""JSON API routes."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import wraps
import io
import logging
import os
from typing import Any, Dict

from flask import Blueprint, current_app, request, send_file

from .demo_accounts import LOGIN_ALLOW_LIST, LOGIN_INSTRUCTIONS, seed_demo_accounts
from .services.portal_service import BLOG_PDF_MAX_BYTES, RESUME_MAX_BYTES, PortalError
from .services.storage_service import APPLICATION_STATUSES, DatabaseError
from .utils.auth import AuthError, bearer_token

api_bp = Blueprint('api', __name__, url_prefix='/api')

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_text(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _current_user() -> Dict[str, Any]:
    token = bearer_token(request.headers.get('Authorization'))
    if not token:
        raise AuthError('Unauthorized')
    return current_app.storage_service.verify_access_token(token)


def json_endpoint(event: str):
    """Map portal, auth and database errors raised by a view into JSON replies."""

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except (AuthError, PortalError) as exc:
                logger.info(f'{event}.rejected', extra={'status': exc.status_code, 'error': exc.message})
                return {'error': exc.message}, exc.status_code
            except DatabaseError as exc:
                logger.warning(f'{event}.database_error', extra={'error': exc.message})
                return {'error': exc.message}, 500
            except Exception:
                logger.exception(f'{event}.error')
                return {'error': 'Internal server error'}, 500

        return wrapped

    return decorator


# --- Diagnostics -----------------------------------------------------------


@api_bp.route('/users')
def users() -> Dict[str, Any]:
    storage = current_app.storage_service
    try:
        recent_users = storage.list_recent_users(limit=10)
        try:
            total_users = storage.count_users()
        except DatabaseError as exc:
            logger.warning('api.users.count_failed', extra={'error': exc.message})
            total_users = 0
    except DatabaseError as exc:
        return {'success': False, 'error': exc.message or 'Database error', 'timestamp': _timestamp()}
    except Exception as exc:
        logger.exception('api.users.error')
        return {'success': False, 'error': _error_text(exc), 'timestamp': _timestamp()}

    return {
        'success': True,
        'totalUsers': total_users,
        'recentUsers': recent_users[:10],
        'timestamp': _timestamp(),
    }


@api_bp.route('/test-login')
def test_login():
    try:
        rows = current_app.storage_service.find_users_by_email(LOGIN_ALLOW_LIST)
    except DatabaseError as exc:
        return {'error': 'Database error', 'details': exc.message}, 500
    except Exception as exc:
        logger.exception('api.test_login.error')
        return {'error': 'Server error', 'details': str(exc) or 'Unknown error'}, 500

    return {
        'status': 'success',
        'message': 'Test users in database',
        'users': [row for row in rows if row.get('email') in LOGIN_ALLOW_LIST],
        'instructions': LOGIN_INSTRUCTIONS,
    }


@api_bp.route('/debug/table-schema')
def table_schema():
    try:
        error = None
        try:
            sample = current_app.storage_service.sample_row('projects')
        except DatabaseError as exc:
            sample, error = None, exc.message
    except Exception as exc:
        logger.exception('api.table_schema.error')
        return {'error': 'Internal server error', 'details': _error_text(exc)}, 500

    return {
        'sample_project': sample,
        'available_columns': list(sample.keys()) if sample else [],
        'error': error,
        'message': 'Projects table sample and available columns',
    }


@api_bp.route('/health')
def health():
    storage = current_app.storage_service
    try:
        database = storage.health()
    except Exception as exc:
        logger.exception('api.health.error')
        return {'error': 'Health check failed', 'message': _error_text(exc), 'timestamp': _timestamp()}, 500

    configuration = storage.configuration_status()
    return {
        'timestamp': _timestamp(),
        'database': {
            'connected': database['connected'],
            'error': database['error'],
            'backend': 'supabase' if storage.uses_supabase else 'local',
        },
        'auth': {
            'connected': storage.uses_supabase or configuration['portalJwtSecret'],
            'mode': 'supabase' if storage.uses_supabase else 'local-jwt',
        },
        'environment': {
            'flaskEnv': os.environ.get('FLASK_ENV', ''),
            'supabaseUrl': 'configured' if configuration['supabaseUrl'] else 'missing',
            'appUrl': os.environ.get('APP_URL'),
        },
    }


@api_bp.route('/debug')
def system_check():
    storage = current_app.storage_service
    try:
        database = storage.health()
    except Exception as exc:
        logger.exception('api.debug.error')
        return {'status': 'error', 'message': 'System check failed', 'error': _error_text(exc)}, 500

    if not database['connected']:
        return {
            'status': 'error',
            'message': 'Database connection failed',
            'error': database['error'],
            'code': database['code'],
        }, 500

    return {
        'status': 'success',
        'database': {
            'connected': True,
            'userTableExists': True,
            'hasUsers': database['hasUsers'],
        },
        'environment': storage.configuration_status(),
        'auth': {'serviceAvailable': storage.uses_supabase or storage.configuration_status()['portalJwtSecret']},
        'timestamp': _timestamp(),
    }


@api_bp.route('/test-users', methods=['GET', 'POST'])
def test_users():
    storage = current_app.storage_service

    if request.method == 'POST':
        if _payload().get('action') != 'create-test-users':
            return {'error': 'Invalid action'}, 400
        try:
            results = seed_demo_accounts(storage)
            accounts = storage.list_test_users()
        except Exception as exc:
            logger.exception('api.test_users.seed_error')
            return {'error': 'Failed to create test users', 'details': _error_text(exc)}, 500
        return {
            'success': True,
            'message': 'Test users creation attempted',
            'results': results,
            'testUsers': accounts,
        }

    try:
        accounts = storage.list_test_users()
    except Exception as exc:
        logger.exception('api.test_users.fetch_error')
        return {'error': 'Failed to fetch test users', 'details': _error_text(exc)}, 500
    return {'success': True, 'testUsers': accounts, 'count': len(accounts)}


# --- Projects --------------------------------------------------------------


@api_bp.route('/projects', methods=['GET'])
@json_endpoint('api.projects.list')
def list_projects():
    projects = current_app.storage_service.list_projects(
        status=request.args.get('status') or 'active',
        author=request.args.get('author'),
        search=request.args.get('search'),
    )
    return {'projects': projects}


@api_bp.route('/projects', methods=['POST'])
@json_endpoint('api.projects.create')
def create_project():
    payload = _payload()
    user = _current_user()
    portal = current_app.portal_service
    profile = portal.require_profile(user['id'])
    project = portal.create_project(profile, payload)
    return {'project': project}, 201


@api_bp.route('/projects/<project_id>', methods=['GET'])
@json_endpoint('api.projects.get')
def get_project(project_id: str):
    return {'project': current_app.portal_service.view_project(project_id)}


@api_bp.route('/projects/<project_id>', methods=['PUT'])
@json_endpoint('api.projects.update')
def update_project(project_id: str):
    payload = _payload()
    user = _current_user()
    project = current_app.portal_service.update_project(user['id'], project_id, payload)
    return {'project': project}


@api_bp.route('/projects/<project_id>', methods=['DELETE'])
@json_endpoint('api.projects.delete')
def delete_project(project_id: str):
    user = _current_user()
    current_app.portal_service.delete_project(user['id'], project_id)
    return {'message': 'Project deleted successfully'}


# --- Blog ------------------------------------------------------------------


@api_bp.route('/blog', methods=['GET'])
@json_endpoint('api.blog.list')
def list_blog_posts():
    posts = current_app.storage_service.list_blog_posts(
        author=request.args.get('author'),
        tag=request.args.get('tag'),
        search=request.args.get('search'),
        include_unpublished=request.args.get('includeUnpublished') == 'true',
    )
    return {'posts': posts}


@api_bp.route('/blog', methods=['POST'])
@json_endpoint('api.blog.create')
def create_blog_post():
    payload = _payload()
    user = _current_user()
    portal = current_app.portal_service
    profile = portal.require_profile(user['id'])
    post = portal.create_blog_post(profile, payload)
    return {'post': post}, 201


@api_bp.route('/blog/<post_id>', methods=['GET'])
@json_endpoint('api.blog.get')
def get_blog_post(post_id: str):
    return {'post': current_app.portal_service.view_blog_post(post_id)}


@api_bp.route('/blog/<post_id>', methods=['PUT'])
@json_endpoint('api.blog.update')
def update_blog_post(post_id: str):
    payload = _payload()
    user = _current_user()
    post = current_app.portal_service.update_blog_post(user['id'], post_id, payload)
    return {'post': post}


@api_bp.route('/blog/<post_id>', methods=['DELETE'])
@json_endpoint('api.blog.delete')
def delete_blog_post(post_id: str):
    user = _current_user()
    current_app.portal_service.delete_blog_post(user['id'], post_id)
    return {'message': 'Blog post deleted successfully'}


# --- Applications ----------------------------------------------------------


@api_bp.route('/applications', methods=['GET'])
@json_endpoint('api.applications.list')
def list_applications():
    user = _current_user()
    applications = current_app.portal_service.list_applications(
        user['id'],
        project_id=request.args.get('projectId'),
        student_id=request.args.get('studentId'),
        teacher_id=request.args.get('teacherId'),
        status=request.args.get('status'),
    )
    return {'applications': applications}


@api_bp.route('/applications', methods=['POST'])
@json_endpoint('api.applications.create')
def create_application():
    payload = _payload()
    user = _current_user()
    portal = current_app.portal_service
    profile = portal.require_profile(user['id'])
    application = portal.submit_application(
        profile,
        {
            'project_id': payload.get('project_id'),
            'cover_letter': payload.get('cover_letter'),
            'skills': payload.get('skills'),
            'resume_url': payload.get('resume_url'),
        },
    )
    return {'application': application}, 201


@api_bp.route('/applications/<application_id>', methods=['GET'])
@json_endpoint('api.applications.get')
def get_application(application_id: str):
    user = _current_user()
    return {'application': current_app.portal_service.get_application_for(user['id'], application_id)}


@api_bp.route('/applications/<application_id>', methods=['PUT'])
@json_endpoint('api.applications.update')
def update_application(application_id: str):
    status = _payload().get('status')
    if status not in APPLICATION_STATUSES:
        return {'error': 'Invalid status'}, 400

    user = _current_user()
    application = current_app.portal_service.update_application_status(user['id'], application_id, status)
    return {'application': application}


@api_bp.route('/applications/<application_id>', methods=['DELETE'])
@json_endpoint('api.applications.delete')
def delete_application(application_id: str):
    user = _current_user()
    current_app.portal_service.withdraw_application(user['id'], application_id)
    return {'message': 'Application deleted successfully'}


# --- Auth and files --------------------------------------------------------


def _uploaded_pdf(max_bytes: int):
    """Return ``(file name, content type, bytes)`` of the ``file`` form field.

    At most one byte past ``max_bytes`` is read so oversized uploads are
    rejected without buffering them whole.
    """

    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise PortalError('No file provided')
    return upload.filename, upload.mimetype or '', upload.stream.read(max_bytes + 1)


@api_bp.route('/auth/token', methods=['POST'])
@json_endpoint('api.auth.token')
def issue_token():
    payload = _payload()
    email = (payload.get('email') or '').strip()
    password = payload.get('password') or ''
    if not email or not password:
        return {'error': 'Email and password are required'}, 400
    try:
        return current_app.storage_service.issue_access_token(email, password)
    except ValueError as exc:
        raise AuthError('Invalid credentials') from exc


@api_bp.route('/upload/resume', methods=['POST'])
@json_endpoint('api.upload.resume')
def upload_resume():
    user = _current_user()
    portal = current_app.portal_service
    profile = portal.require_profile(user['id'])
    file_name, content_type, data = _uploaded_pdf(RESUME_MAX_BYTES)
    return portal.upload_resume(profile, file_name, content_type, data)


@api_bp.route('/upload/blog-pdf', methods=['POST'])
@json_endpoint('api.upload.blog_pdf')
def upload_blog_pdf():
    user = _current_user()
    portal = current_app.portal_service
    profile = portal.require_profile(user['id'])
    file_name, content_type, data = _uploaded_pdf(BLOG_PDF_MAX_BYTES)
    return portal.upload_blog_pdf(profile, file_name, content_type, data)


@api_bp.route('/download/resume', methods=['GET'])
@json_endpoint('api.download.resume')
def download_resume():
    application_id = request.args.get('applicationId')
    if not application_id:
        return {'error': 'Application ID is required'}, 400

    user = _current_user()
    file_name, data = current_app.portal_service.resume_for_download(user['id'], application_id)
    response = send_file(
        io.BytesIO(data),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=file_name,
    )
    response.headers['Cache-Control'] = 'no-cache'
    return response
