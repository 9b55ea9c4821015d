from __future__ import annotations

from functools import wraps
import io
import logging
from typing import Any, Dict, List, Optional

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)

from .services.portal_service import BLOG_PDF_MAX_BYTES, DEPARTMENTS, PortalError
from .services.storage_service import PUBLIC_BUCKETS, DatabaseError
from .utils.content import generate_excerpt, is_google_drive_link, parse_gpa, render_markdown, split_list

main_bp = Blueprint('main', __name__)

logger = logging.getLogger(__name__)

APPLICATION_REQUIRED_FIELDS = ('name', 'phone', 'email', 'year', 'gpa', 'reason')


def _require_login() -> str | None:
    if 'user' not in session:
        flash('Please log in to continue.', 'warning')
        return url_for('main.login', next=request.full_path)
    return None


def login_required(view):
    """Decorator ensuring the user is authenticated before accessing a view."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        redirect_url = _require_login()
        if redirect_url:
            return redirect(redirect_url)
        return view(*args, **kwargs)

    return wrapped


def teacher_required(view):
    """Like :func:`login_required`, and the session user must be a teacher."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        redirect_url = _require_login()
        if redirect_url:
            return redirect(redirect_url)
        if session['user'].get('role') != 'teacher':
            flash('This page is only available to teachers.', 'warning')
            return redirect(url_for('main.index'))
        return view(*args, **kwargs)

    return wrapped


def _safe_fetch(event: str, fetch, default):
    """Run a read for a presentational page; a failed read renders as empty."""

    try:
        return fetch()
    except DatabaseError as exc:
        logger.warning(event, extra={'error': exc.message})
        return default


@main_bp.app_context_processor
def inject_user() -> Dict[str, Any]:
    return {'current_user': session.get('user')}


@main_bp.app_template_filter('markdown')
def markdown_filter(content: Optional[str]):
    return render_markdown(content)


@main_bp.route('/')
def index() -> str:
    storage = current_app.storage_service
    projects = _safe_fetch('index.projects_failed', lambda: storage.list_projects(limit=6), [])
    posts = _safe_fetch('index.posts_failed', lambda: storage.list_blog_posts(limit=3), [])
    stats = {
        'active_projects': _safe_fetch('index.count_failed', lambda: storage.count_projects('active'), 0),
        'total_projects': _safe_fetch('index.count_failed', storage.count_projects, 0),
        'users': _safe_fetch('index.count_failed', storage.count_users, 0),
    }
    return render_template('index.html', projects=projects, posts=posts, stats=stats)


@main_bp.route('/login', methods=['GET', 'POST'])
def login() -> str | Response:
    if request.method == 'POST':
        email = (request.form.get('email') or '').strip()
        password = request.form.get('password') or ''
        try:
            user = current_app.storage_service.sign_in(email=email, password=password)
        except Exception as exc:  # pragma: no cover - depends on Supabase configuration
            flash(str(exc) or 'Unable to sign in.', 'danger')
            logger.info('auth.login.failed', extra={'email': email})
            return render_template('login.html', email=email)

        session['user'] = user
        session.modified = True
        logger.info('auth.login.success', extra={'user_id': user['id'], 'role': user.get('role')})
        flash(f"Welcome back, {user.get('name') or user.get('email')}!", 'success')

        next_url = request.args.get('next')
        if next_url and next_url.startswith('/') and not next_url.startswith('//'):
            return redirect(next_url)
        if user.get('role') == 'teacher':
            return redirect(url_for('main.teacher_dashboard'))
        return redirect(url_for('main.index'))

    return render_template('login.html', email='')


@main_bp.route('/logout')
def logout() -> Response:
    session.clear()
    flash('You have been logged out.', 'info')
    return redirect(url_for('main.index'))


@main_bp.route('/projects')
def projects() -> str:
    search = (request.args.get('search') or '').strip()
    storage = current_app.storage_service
    items = _safe_fetch('projects.list_failed', lambda: storage.list_projects(search=search or None), [])
    return render_template('projects.html', projects=items, search=search)


@main_bp.route('/blog')
def blog_list() -> str:
    tag = (request.args.get('tag') or '').strip()
    storage = current_app.storage_service
    posts = _safe_fetch('blog.list_failed', lambda: storage.list_blog_posts(tag=tag or None), [])
    return render_template('blog_list.html', posts=posts, tag=tag)


@main_bp.route('/apply', methods=['GET', 'POST'])
@login_required
def apply() -> str | Response:
    user = session['user']
    if user.get('role') != 'student':
        flash('Only students can apply to research projects.', 'warning')
        return redirect(url_for('main.login'))

    project_id = request.args.get('projectId') or request.form.get('project_id')
    if not project_id:
        return redirect(url_for('main.projects'))
    project_title = request.args.get('project') or request.form.get('project_title') or 'Research Project'

    form: Dict[str, str] = {
        'name': user.get('name') or '',
        'phone': '',
        'email': user.get('email') or '',
        'year': '',
        'gpa': '',
        'skills': '',
        'reason': '',
        'resume_link': '',
        'portfolio_link': '',
    }
    error: Optional[str] = None

    if request.method == 'POST':
        form.update({key: (request.form.get(key) or '').strip() for key in form})
        error = _validate_application_form(form)
        if not error:
            cover_letter = form['reason']
            if form['portfolio_link']:
                cover_letter = f"{cover_letter}\n\nPortfolio: {form['portfolio_link']}"
            portal = current_app.portal_service
            try:
                profile = portal.require_profile(user['id'])
                portal.submit_application(
                    profile,
                    {
                        'project_id': project_id,
                        'student_name': form['name'],
                        'student_phone': form['phone'],
                        'student_year': form['year'],
                        'student_gpa': parse_gpa(form['gpa']),
                        'cover_letter': cover_letter,
                        'skills': split_list(form['skills']),
                        'resume_url': form['resume_link'],
                    },
                )
            except (PortalError, DatabaseError) as exc:
                error = exc.message
                logger.info('apply.rejected', extra={'user_id': user['id'], 'project_id': project_id, 'error': error})
            else:
                return render_template('apply_success.html', project_title=project_title)

    return render_template(
        'apply.html',
        form=form,
        error=error,
        project_id=project_id,
        project_title=project_title,
    )


def _validate_application_form(form: Dict[str, str]) -> Optional[str]:
    if any(not form[field] for field in APPLICATION_REQUIRED_FIELDS):
        return 'Please fill in all required fields'
    try:
        parse_gpa(form['gpa'])
    except ValueError as exc:
        return str(exc)
    if not is_google_drive_link(form['resume_link']):
        return 'Resume link must be a valid Google Drive or Google Docs link'
    if not is_google_drive_link(form['portfolio_link']):
        return 'Portfolio link must be a valid Google Drive or Google Docs link'
    return None


@main_bp.route('/blog/<post_id>')
def blog_detail(post_id: str) -> str | Response:
    try:
        post = current_app.portal_service.view_blog_post(post_id)
    except PortalError:
        return render_template('not_found.html', item='Blog Post'), 404
    except DatabaseError as exc:
        logger.warning('blog.detail_failed', extra={'post_id': post_id, 'error': exc.message})
        abort(503)

    user = session.get('user')
    can_edit = bool(user and user.get('id') == post.get('author_id'))
    return render_template('blog_detail.html', post=post, can_edit=can_edit)


@main_bp.route('/blog/<post_id>/delete', methods=['POST'])
@login_required
def delete_blog_post(post_id: str) -> Response:
    user = session['user']
    try:
        current_app.portal_service.delete_blog_post(user['id'], post_id)
    except (PortalError, DatabaseError) as exc:
        flash(f'Failed to delete blog post: {exc.message}', 'danger')
        return redirect(url_for('main.blog_detail', post_id=post_id))

    flash('Blog post deleted.', 'info')
    return redirect(url_for('main.blog_list'))


@main_bp.route('/blog/edit/<post_id>', methods=['GET', 'POST'])
@login_required
def edit_blog_post(post_id: str) -> str | Response:
    user = session['user']
    post = current_app.storage_service.get_blog_post(post_id)
    if not post:
        flash('Blog post not found.', 'warning')
        return redirect(url_for('main.blog_list'))
    if post.get('author_id') != user['id']:
        abort(403)

    form = {
        'title': post.get('title') or '',
        'content': post.get('content') or '',
        'excerpt': post.get('excerpt') or '',
        'tags': ', '.join(post.get('tags') or []),
        'published': bool(post.get('published')),
    }
    error: Optional[str] = None

    if request.method == 'POST':
        form.update(
            {
                'title': (request.form.get('title') or '').strip(),
                'content': request.form.get('content') or '',
                'excerpt': (request.form.get('excerpt') or '').strip(),
                'tags': request.form.get('tags') or '',
                'published': bool(request.form.get('published')),
            }
        )
        if request.form.get('action') == 'generate_excerpt':
            form['excerpt'] = generate_excerpt(form['content'])
            return render_template('blog_form.html', form=form, post=post, error=None)

        try:
            current_app.portal_service.update_blog_post(
                user['id'],
                post_id,
                {
                    'title': form['title'],
                    'content': form['content'],
                    'excerpt': form['excerpt'] or generate_excerpt(form['content']),
                    'tags': split_list(form['tags']),
                    'published': form['published'],
                },
            )
        except (PortalError, DatabaseError) as exc:
            error = exc.message
        else:
            flash('Blog post updated.', 'success')
            return redirect(url_for('main.blog_detail', post_id=post_id))

    return render_template('blog_form.html', form=form, post=post, error=error)


@main_bp.route('/teacher/edit-post/<project_id>', methods=['GET', 'POST'])
@login_required
def edit_project(project_id: str) -> str | Response:
    user = session['user']
    if user.get('role') != 'teacher':
        flash('Only teachers can edit research posts.', 'warning')
        return redirect(url_for('main.index'))

    project = current_app.storage_service.get_project(project_id)
    if not project:
        flash('Research post not found.', 'warning')
        return redirect(url_for('main.projects'))
    if project.get('author_id') != user['id']:
        abort(403)

    form = _project_form(project)
    error: Optional[str] = None

    if request.method == 'POST':
        form.update({key: (request.form.get(key) or '').strip() for key in form})
        changes = _project_changes(form)
        if isinstance(changes, str):
            error = changes
        else:
            try:
                current_app.portal_service.update_project(user['id'], project_id, changes)
            except (PortalError, DatabaseError) as exc:
                error = exc.message
            else:
                flash('Research post updated.', 'success')
                return redirect(url_for('main.projects'))

    return render_template('project_form.html', form=form, project=project, error=error)


@main_bp.route('/register', methods=['GET', 'POST'])
def register() -> str | Response:
    if 'user' in session:
        return redirect(url_for('main.index'))

    form = {
        'name': (request.form.get('name') or '').strip(),
        'email': (request.form.get('email') or '').strip(),
        'role': request.form.get('role') or 'student',
        'department': request.form.get('department') or '',
    }
    error: Optional[str] = None

    if request.method == 'POST':
        try:
            current_app.portal_service.register(
                dict(
                    form,
                    password=request.form.get('password') or '',
                    confirm_password=request.form.get('confirm_password') or '',
                )
            )
        except (PortalError, DatabaseError) as exc:
            error = exc.message
        else:
            flash('Account created. You can log in now.', 'success')
            return redirect(url_for('main.login'))

    return render_template('register.html', form=form, departments=DEPARTMENTS, error=error)


@main_bp.route('/my-applications')
@login_required
def my_applications() -> str | Response:
    user = session['user']
    if user.get('role') != 'student':
        flash('Only students have applications to track.', 'warning')
        return redirect(url_for('main.index'))

    applications = _safe_fetch(
        'applications.list_failed',
        lambda: current_app.portal_service.list_applications(user['id']),
        [],
    )
    return render_template('my_applications.html', applications=applications)


@main_bp.route('/teacher')
@teacher_required
def teacher_dashboard() -> str:
    portal = current_app.portal_service
    profile = portal.require_profile(session['user']['id'])
    overview = _safe_fetch(
        'teacher.overview_failed',
        lambda: portal.teacher_overview(profile),
        {'active_posts': 0, 'applications': 0, 'accepted': 0, 'total_views': 0},
    )
    return render_template('teacher_dashboard.html', overview=overview)


@main_bp.route('/teacher/new-post', methods=['GET', 'POST'])
@teacher_required
def new_project() -> str | Response:
    form = dict(_project_form({}), status='active')
    error: Optional[str] = None

    if request.method == 'POST':
        form.update({key: (request.form.get(key) or '').strip() for key in form})
        changes = _project_changes(form)
        if isinstance(changes, str):
            error = changes
        else:
            portal = current_app.portal_service
            try:
                profile = portal.require_profile(session['user']['id'])
                portal.create_project(profile, changes)
            except (PortalError, DatabaseError) as exc:
                error = exc.message
            else:
                flash('Research post published.', 'success')
                return redirect(url_for('main.teacher_posts'))

    return render_template('project_form.html', form=form, project=None, error=error)


@main_bp.route('/teacher/my-posts')
@teacher_required
def teacher_posts() -> str:
    portal = current_app.portal_service
    profile = portal.require_profile(session['user']['id'])
    projects = _safe_fetch('teacher.posts_failed', lambda: portal.teacher_projects(profile), [])
    return render_template('teacher_posts.html', projects=projects)


@main_bp.route('/teacher/my-posts/<project_id>/delete', methods=['POST'])
@teacher_required
def delete_project(project_id: str) -> Response:
    try:
        current_app.portal_service.delete_project(session['user']['id'], project_id)
    except (PortalError, DatabaseError) as exc:
        flash(f'Failed to delete research post: {exc.message}', 'danger')
    else:
        flash('Research post deleted.', 'info')
    return redirect(url_for('main.teacher_posts'))


@main_bp.route('/teacher/applications')
@teacher_required
def teacher_applications() -> str:
    user = session['user']
    post_id = request.args.get('postId') or None
    applications = _safe_fetch(
        'teacher.applications_failed',
        lambda: current_app.portal_service.list_applications(
            user['id'], project_id=post_id, teacher_id=user['id']
        ),
        [],
    )
    return render_template('teacher_applications.html', applications=applications, post_id=post_id)


@main_bp.route('/teacher/applications/<application_id>/status', methods=['POST'])
@teacher_required
def review_application(application_id: str) -> Response:
    status = request.form.get('status')
    try:
        current_app.portal_service.update_application_status(session['user']['id'], application_id, status)
    except (PortalError, DatabaseError) as exc:
        flash(f'Failed to update application status: {exc.message}', 'danger')
    else:
        flash(f'Application {status}.', 'success')
    return redirect(url_for('main.teacher_applications', postId=request.form.get('post_id') or None))


@main_bp.route('/teacher/applications/<application_id>/resume')
@teacher_required
def download_resume(application_id: str) -> Response:
    try:
        file_name, data = current_app.portal_service.resume_for_download(session['user']['id'], application_id)
    except (PortalError, DatabaseError) as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('main.teacher_applications'))
    return send_file(io.BytesIO(data), mimetype='application/pdf', as_attachment=True, download_name=file_name)


@main_bp.route('/blog/new', methods=['GET', 'POST'])
@login_required
def new_blog_post() -> str | Response:
    form = {'title': '', 'content': '', 'excerpt': '', 'tags': '', 'published': True}
    error: Optional[str] = None

    if request.method == 'POST':
        form.update(
            {
                'title': (request.form.get('title') or '').strip(),
                'content': request.form.get('content') or '',
                'excerpt': (request.form.get('excerpt') or '').strip(),
                'tags': request.form.get('tags') or '',
                'published': bool(request.form.get('published')),
            }
        )
        if request.form.get('action') == 'generate_excerpt':
            form['excerpt'] = generate_excerpt(form['content'])
            return render_template('blog_form.html', form=form, post=None, error=None)

        portal = current_app.portal_service
        try:
            profile = portal.require_profile(session['user']['id'])
            payload = {
                'title': form['title'],
                'content': form['content'],
                'excerpt': form['excerpt'],
                'tags': split_list(form['tags']),
                'published': form['published'],
            }
            pdf = request.files.get('pdf')
            if pdf is not None and pdf.filename:
                uploaded = portal.upload_blog_pdf(
                    profile,
                    pdf.filename,
                    pdf.mimetype or '',
                    pdf.stream.read(BLOG_PDF_MAX_BYTES + 1),
                )
                payload['pdf_url'] = uploaded['url']
            post = portal.create_blog_post(profile, payload)
        except (PortalError, DatabaseError) as exc:
            error = exc.message
        else:
            flash('Blog post created.', 'success')
            return redirect(url_for('main.blog_detail', post_id=post['id']))

    return render_template('blog_form.html', form=form, post=None, error=error)


@main_bp.route('/uploads/<bucket>/<path:path>')
def uploaded_file(bucket: str, path: str) -> Response:
    """Serve files stored by the local backend; Supabase serves its own URLs."""

    storage = current_app.storage_service
    if storage.uses_supabase or bucket not in PUBLIC_BUCKETS:
        abort(404)
    try:
        target = storage.local_file_path(bucket, path)
    except ValueError:
        abort(404)
    if not target.is_file():
        abort(404)
    return send_file(target, mimetype='application/pdf')


def _project_form(project: Dict[str, Any]) -> Dict[str, str]:
    return {
        'title': project.get('title') or '',
        'description': project.get('description') or '',
        'requirements': ', '.join(project.get('requirements') or []),
        'duration': project.get('duration') or '',
        'location': project.get('location') or '',
        'max_students': str(project.get('max_students') or 1),
        'deadline': project.get('deadline') or '',
        'stipend': project.get('stipend') or '',
        'status': project.get('status') or 'draft',
        'tags': ', '.join(project.get('tags') or []),
    }


def _project_changes(form: Dict[str, str]) -> Dict[str, Any] | str:
    if not form['title'] or not form['description']:
        return 'Title and description are required'
    try:
        max_students = int(form['max_students'] or 1)
    except ValueError:
        return 'Maximum students must be a whole number'
    if max_students < 1:
        return 'Maximum students must be at least 1'

    changes: Dict[str, Any] = dict(form)
    changes['requirements'] = split_list(form['requirements'])
    changes['tags'] = split_list(form['tags'])
    changes['max_students'] = max_students
    changes['stipend'] = form['stipend'] or None
    changes['deadline'] = form['deadline'] or None
    return changes


def nav_items() -> List[Dict[str, str]]:
    """Navigation entries rendered by the ``nav_item`` template macro."""

    items = [
        {'href': url_for('main.index'), 'label': 'Home'},
        {'href': url_for('main.projects'), 'label': 'Projects'},
        {'href': url_for('main.blog_list'), 'label': 'Blog'},
    ]
    role = (session.get('user') or {}).get('role')
    if role == 'teacher':
        items.append({'href': url_for('main.teacher_dashboard'), 'label': 'Dashboard'})
    elif role == 'student':
        items.append({'href': url_for('main.my_applications'), 'label': 'My Applications'})
    return items


@main_bp.app_context_processor
def inject_navigation() -> Dict[str, Any]:
    return {'nav_items': nav_items}
