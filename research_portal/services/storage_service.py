from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from dotenv import load_dotenv
from postgrest.exceptions import APIError
from supabase import Client as SupabaseClient, create_client
from werkzeug.security import check_password_hash, generate_password_hash

from ..utils.auth import ACCESS_TOKEN_TTL, AuthError, decode_access_token, encode_access_token

logger = logging.getLogger(__name__)
load_dotenv()

USER_SUMMARY_COLUMNS = ('id', 'email', 'name', 'role', 'created_at', 'updated_at')
USER_LOGIN_COLUMNS = ('id', 'email', 'username', 'role', 'name')
TEST_USER_COLUMNS = (
    'id', 'email', 'username', 'name', 'role', 'department',
    'email_verified', 'is_active', 'created_at',
)
TEST_USER_DOMAIN = '.test@iiitkottayam.ac.in'
PROJECT_STATUSES = ('draft', 'active', 'closed')
APPLICATION_STATUSES = ('pending', 'accepted', 'rejected')
UPLOAD_BUCKETS = ('resumes', 'blog-pdfs')
# Buckets whose files are readable without signing in.
PUBLIC_BUCKETS = ('blog-pdfs',)

# Columns embedded from ``projects`` when listing applications.
_APPLICATION_SELECT = '*, projects:project_id (title, author_name, author_email, deadline)'
_APPLICATION_PROJECT_FIELDS = ('title', 'author_name', 'author_email', 'deadline')


class DatabaseError(Exception):
    """Raised when the hosted database rejects a query."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class StorageService:
    """Data access for the portal tables.

    Queries go to Supabase when it is configured. Otherwise every table lives
    in a JSON file under ``STORAGE_DATA_DIR`` so the portal can run locally.
    """

    def __init__(self) -> None:
        self._url = self._get_env_value(
            'SUPABASE_URL',
            'NEXT_PUBLIC_SUPABASE_URL',
            'SUPABASE_PROJECT_URL',
        )
        self._service_key = self._get_env_value('SUPABASE_SERVICE_ROLE_KEY')
        self._anon_key = self._get_env_value(
            'SUPABASE_ANON_KEY',
            'NEXT_PUBLIC_SUPABASE_ANON_KEY',
        )
        self._supabase: Optional[SupabaseClient] = self._init_supabase(
            self._service_key or self._anon_key
        )
        self._jwt_secret = os.getenv('PORTAL_JWT_SECRET', '')

        data_dir = Path(os.getenv('STORAGE_DATA_DIR', '/tmp/research-portal-data')).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = data_dir.resolve()

    @property
    def uses_supabase(self) -> bool:
        return self._supabase is not None

    def configuration_status(self) -> Dict[str, bool]:
        """Report which credentials are present without exposing them."""

        return {
            'supabaseUrl': bool(self._url),
            'supabaseAnonKey': bool(self._anon_key),
            'supabaseServiceKey': bool(self._service_key),
            'portalJwtSecret': bool(self._jwt_secret),
        }

    # --- Users -----------------------------------------------------------

    def list_recent_users(self, limit: int = 10) -> List[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table('users')
                .select(', '.join(USER_SUMMARY_COLUMNS))
                .order('created_at', desc=True)
                .limit(limit)
            )
            return list(response.data or [])

        rows = self._sorted(self._load_table('users'), 'created_at', desc=True)
        return [self._pick(row, USER_SUMMARY_COLUMNS) for row in rows[:limit]]

    def count_users(self) -> int:
        if self._supabase:
            response = self._execute(
                self._supabase.table('users').select('*', count='exact', head=True)
            )
            return max(int(response.count or 0), 0)

        return len(self._load_table('users'))

    def find_users_by_email(self, emails: Sequence[str]) -> List[Dict[str, Any]]:
        if not emails:
            return []

        if self._supabase:
            response = self._execute(
                self._supabase.table('users')
                .select(', '.join(USER_LOGIN_COLUMNS))
                .in_('email', list(emails))
            )
            return list(response.data or [])

        wanted = set(emails)
        return [
            self._pick(row, USER_LOGIN_COLUMNS)
            for row in self._load_table('users')
            if row.get('email') in wanted
        ]

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table('users').select('*').eq('id', user_id).limit(1)
            )
            return response.data[0] if response.data else None

        for row in self._load_table('users'):
            if row.get('id') == user_id:
                return self._public_user(row)
        return None

    def list_test_users(self) -> List[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table('users')
                .select(', '.join(TEST_USER_COLUMNS))
                .like('email', f'%{TEST_USER_DOMAIN}')
                .order('role', desc=False)
            )
            return list(response.data or [])

        rows = [
            self._pick(row, TEST_USER_COLUMNS)
            for row in self._load_table('users')
            if str(row.get('email', '')).endswith(TEST_USER_DOMAIN)
        ]
        return self._sorted(rows, 'role')

    def upsert_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or update a ``users`` row keyed on its email address."""

        if self._supabase:
            record = {key: value for key, value in user.items() if key != 'password_hash'}
            response = self._execute(
                self._supabase.table('users').upsert(record, on_conflict='email')
            )
            return response.data[0] if response.data else record

        rows = self._load_table('users')
        now = self._now()
        for row in rows:
            if row.get('email') == user.get('email'):
                row.update(user)
                row['updated_at'] = now
                self._save_table('users', rows)
                return self._public_user(row)

        record = {'id': str(uuid4()), 'created_at': now, 'updated_at': now}
        record.update(user)
        rows.append(record)
        self._save_table('users', rows)
        return self._public_user(record)

    def create_account(self, email: str, password: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Create login credentials for ``email`` and upsert its profile row."""

        row = dict(profile, email=email, email_verified=True, is_active=True)
        if self._supabase:
            metadata = {'name': profile.get('name'), 'role': profile.get('role')}
            try:
                user_id = self.create_auth_user(email, password, metadata)
            except Exception as exc:
                logger.warning('auth.create_user_failed', extra={'email': email, 'error': str(exc)})
                raise DatabaseError(str(exc) or 'Account creation failed') from exc
            if not user_id:
                raise DatabaseError('Account creation failed')
            row['id'] = user_id
        else:
            row['password_hash'] = generate_password_hash(password)
        return self.upsert_user(row)

    # --- Auth --------------------------------------------------------------

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """Resolve a bearer token to ``{'id', 'email'}`` or raise ``AuthError``."""

        if not token:
            raise AuthError('Unauthorized')

        if self._supabase:
            try:
                response = self._supabase.auth.get_user(token)
            except Exception:
                logger.warning('auth.verify_token.failed', exc_info=True)
                raise AuthError('Unauthorized')
            user = getattr(response, 'user', None)
            if not user:
                raise AuthError('Unauthorized')
            return {'id': user.id, 'email': getattr(user, 'email', None)}

        payload = decode_access_token(token, self._jwt_secret)
        return {'id': str(payload['sub']), 'email': payload.get('email')}

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate a user for the page session and return their profile."""

        if self._supabase:
            auth_client = self._auth_client()
            response = auth_client.auth.sign_in_with_password({'email': email, 'password': password})
            user = getattr(response, 'user', None)
            if not user:  # pragma: no cover - network dependent
                raise ValueError('Invalid credentials.')
            profile = self.get_user(user.id)
            if not profile:
                raise ValueError('User profile not found.')
            return self._session_user(profile)

        return self._session_user(self._check_local_password(email, password))

    def issue_access_token(self, email: str, password: str) -> Dict[str, Any]:
        """Exchange credentials for a bearer token accepted by the JSON API."""

        if self._supabase:
            auth_client = self._auth_client()
            try:
                response = auth_client.auth.sign_in_with_password({'email': email, 'password': password})
            except Exception as exc:
                logger.info('auth.token.rejected', extra={'email': email, 'error': str(exc)})
                raise ValueError('Invalid credentials.') from exc
            auth_session = getattr(response, 'session', None)
            if not auth_session:  # pragma: no cover - network dependent
                raise ValueError('Invalid credentials.')
            return {
                'access_token': auth_session.access_token,
                'token_type': 'bearer',
                'expires_in': auth_session.expires_in,
            }

        row = self._check_local_password(email, password)
        token = encode_access_token(row['id'], row.get('email'), self._jwt_secret)
        return {
            'access_token': token,
            'token_type': 'bearer',
            'expires_in': int(ACCESS_TOKEN_TTL.total_seconds()),
        }

    def health(self) -> Dict[str, Any]:
        """Query the ``users`` table and report reachability."""

        try:
            rows = self.sample_rows('users', columns='id', limit=1)
        except DatabaseError as exc:
            return {'connected': False, 'error': exc.message, 'code': exc.code, 'hasUsers': False}
        return {'connected': True, 'error': None, 'code': None, 'hasUsers': bool(rows)}

    # --- Schema sampling ---------------------------------------------------

    def sample_rows(self, table: str, columns: str = '*', limit: int = 1) -> List[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table(table).select(columns).limit(limit)
            )
            return list(response.data or [])

        rows = self._load_table(table)[:limit]
        if columns == '*':
            return [self._public_user(row) if table == 'users' else dict(row) for row in rows]
        wanted = [name.strip() for name in columns.split(',')]
        return [self._pick(row, wanted) for row in rows]

    def sample_row(self, table: str) -> Optional[Dict[str, Any]]:
        rows = self.sample_rows(table)
        return rows[0] if rows else None

    # --- Projects ----------------------------------------------------------

    def list_projects(
        self,
        status: str = 'active',
        author: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if self._supabase:
            query = self._supabase.table('projects').select('*')
            if status != 'all':
                query = query.eq('status', status)
            if author:
                query = query.eq('author_email', author)
            if search:
                query = query.or_(self._ilike_any(('title', 'description'), search))
            query = query.order('created_at', desc=True)
            if limit:
                query = query.limit(limit)
            return list(self._execute(query).data or [])

        rows = self._load_table('projects')
        if status != 'all':
            rows = [row for row in rows if row.get('status') == status]
        if author:
            rows = [row for row in rows if row.get('author_email') == author]
        if search:
            rows = [row for row in rows if self._matches(row, ('title', 'description'), search)]
        rows = self._sorted(rows, 'created_at', desc=True)
        return rows[:limit] if limit else rows

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        return self._get_row('projects', project_id)

    def create_project(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert_row('projects', dict(data, views=data.get('views', 0)))

    def update_project(self, project_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update_row('projects', project_id, changes)

    def increment_project_views(self, project: Dict[str, Any]) -> None:
        self._increment_views('projects', project)

    def delete_project(self, project_id: str) -> None:
        """Delete a project together with the applications filed against it."""

        if self._supabase:
            self._execute(self._supabase.table('applications').delete().eq('project_id', project_id))
            self._execute(self._supabase.table('projects').delete().eq('id', project_id))
            return

        applications = [
            row for row in self._load_table('applications') if row.get('project_id') != project_id
        ]
        self._save_table('applications', applications)
        self._delete_row('projects', project_id)

    def count_projects(self, status: Optional[str] = None) -> int:
        if self._supabase:
            query = self._supabase.table('projects').select('*', count='exact', head=True)
            if status:
                query = query.eq('status', status)
            return max(int(self._execute(query).count or 0), 0)

        rows = self._load_table('projects')
        if status:
            rows = [row for row in rows if row.get('status') == status]
        return len(rows)

    # --- Blog posts --------------------------------------------------------

    def list_blog_posts(
        self,
        author: Optional[str] = None,
        tag: Optional[str] = None,
        search: Optional[str] = None,
        include_unpublished: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        fields = ('title', 'content', 'excerpt')
        if self._supabase:
            query = self._supabase.table('blog_posts').select('*')
            if not include_unpublished:
                query = query.eq('published', True)
            if author:
                query = query.eq('author_email', author)
            if tag:
                query = query.contains('tags', [tag])
            if search:
                query = query.or_(self._ilike_any(fields, search))
            query = query.order('created_at', desc=True)
            if limit:
                query = query.limit(limit)
            return list(self._execute(query).data or [])

        rows = self._load_table('blog_posts')
        if not include_unpublished:
            rows = [row for row in rows if row.get('published') is True]
        if author:
            rows = [row for row in rows if row.get('author_email') == author]
        if tag:
            rows = [row for row in rows if tag in (row.get('tags') or [])]
        if search:
            rows = [row for row in rows if self._matches(row, fields, search)]
        rows = self._sorted(rows, 'created_at', desc=True)
        return rows[:limit] if limit else rows

    def get_blog_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        return self._get_row('blog_posts', post_id)

    def create_blog_post(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert_row('blog_posts', dict(data, views=data.get('views', 0)))

    def update_blog_post(self, post_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update_row('blog_posts', post_id, changes)

    def increment_blog_views(self, post: Dict[str, Any]) -> None:
        self._increment_views('blog_posts', post)

    def delete_blog_post(self, post_id: str) -> None:
        self._delete_row('blog_posts', post_id)

    # --- Applications ------------------------------------------------------

    def list_applications(
        self,
        project_id: Optional[str] = None,
        student_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        filters = {
            'project_id': project_id,
            'student_id': student_id,
            'teacher_id': teacher_id,
            'status': status,
        }
        if self._supabase:
            query = self._supabase.table('applications').select(_APPLICATION_SELECT)
            for column, value in filters.items():
                if value:
                    query = query.eq(column, value)
            query = query.order('applied_at', desc=True)
            return list(self._execute(query).data or [])

        rows = self._load_table('applications')
        for column, value in filters.items():
            if value:
                rows = [row for row in rows if row.get(column) == value]
        rows = self._sorted(rows, 'applied_at', desc=True)
        return [self._with_project(row) for row in rows]

    def get_application(self, application_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table('applications')
                .select(_APPLICATION_SELECT)
                .eq('id', application_id)
                .limit(1)
            )
            return response.data[0] if response.data else None

        row = self._get_row('applications', application_id)
        return self._with_project(row) if row else None

    def find_application(self, student_id: str, project_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table('applications')
                .select('id')
                .eq('student_id', student_id)
                .eq('project_id', project_id)
                .limit(1)
            )
            return response.data[0] if response.data else None

        for row in self._load_table('applications'):
            if row.get('student_id') == student_id and row.get('project_id') == project_id:
                return row
        return None

    def create_application(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault('applied_at', self._now())
        return self._insert_row('applications', record)

    def update_application_status(self, application_id: str, status: str) -> Optional[Dict[str, Any]]:
        if status not in APPLICATION_STATUSES:
            raise ValueError(f'Invalid status: {status}')
        return self._update_row('applications', application_id, {'status': status})

    def delete_application(self, application_id: str) -> None:
        self._delete_row('applications', application_id)

    # --- File storage ------------------------------------------------------

    def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``<bucket>/<path>`` and return its public URL.

        Without Supabase the file is written under ``STORAGE_DATA_DIR/uploads``
        and served back by the ``/uploads`` page route.
        """

        if self._supabase:
            bucket_api = self._supabase.storage.from_(bucket)
            try:
                bucket_api.upload(
                    path,
                    data,
                    {'content-type': content_type, 'cache-control': '3600', 'upsert': 'false'},
                )
            except Exception as exc:
                logger.warning('storage.upload_failed', exc_info=True, extra={'bucket': bucket})
                raise DatabaseError(str(exc) or 'Upload failed') from exc
            return bucket_api.get_public_url(path)

        target = self.local_file_path(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f'/uploads/{bucket}/{path}'

    def download_file(self, bucket: str, path: str) -> Optional[bytes]:
        if self._supabase:
            try:
                return self._supabase.storage.from_(bucket).download(path)
            except Exception as exc:
                logger.warning('storage.download_failed', exc_info=True, extra={'bucket': bucket})
                raise DatabaseError(str(exc) or 'Download failed') from exc

        target = self.local_file_path(bucket, path)
        return target.read_bytes() if target.is_file() else None

    def local_file_path(self, bucket: str, path: str) -> Path:
        """Resolve an uploaded file inside the local store, refusing escapes."""

        if bucket not in UPLOAD_BUCKETS:
            raise ValueError(f'Unknown bucket: {bucket}')
        root = (self._data_dir / 'uploads' / bucket).resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            raise ValueError(f'Invalid file path: {path}')
        return target

    def remove_file(self, bucket: str, owner_id: str, public_url: str) -> None:
        """Delete an uploaded file referenced by ``public_url`` from ``bucket``.

        Uploads are stored as ``<owner_id>/<file name>``. Failures are logged
        and ignored so the owning row can still be removed.
        """

        file_name = public_url.rstrip('/').split('/')[-1]
        if not file_name:
            return
        path = f'{owner_id}/{file_name}'
        try:
            if self._supabase:
                self._supabase.storage.from_(bucket).remove([path])
            else:
                self.local_file_path(bucket, path).unlink(missing_ok=True)
        except Exception:
            logger.warning('storage.remove_failed', exc_info=True, extra={'bucket': bucket})

    def create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[str]:
        """Create a confirmed Supabase auth user and return its id."""

        if not self._supabase:
            return None
        response = self._supabase.auth.admin.create_user(
            {
                'email': email,
                'password': password,
                'email_confirm': True,
                'user_metadata': metadata,
            }
        )
        user = getattr(response, 'user', None)
        return user.id if user else None

    # --- Private helpers -------------------------------------------------

    def _init_supabase(self, key: Optional[str]) -> Optional[SupabaseClient]:
        if not self._url or not key:
            logger.info('Supabase disabled (missing env); using local storage')
            return None
        try:
            return create_client(self._url, key)
        except Exception as exc:
            logger.warning('Supabase init failed: %s', exc)
            return None

    def _auth_client(self) -> SupabaseClient:
        # Password sign-in swaps the client's auth header to the user's
        # session, so it must not happen on the service-role data client.
        return create_client(self._url, self._anon_key or self._service_key)

    def _execute(self, query):
        try:
            response = query.execute()
        except APIError as exc:
            logger.warning('supabase.query_failed: %s', exc.message, extra={'code': exc.code})
            raise DatabaseError(exc.message or str(exc), exc.code) from exc

        error = getattr(response, 'error', None)
        if error:
            message = getattr(error, 'message', None) or str(error)
            raise DatabaseError(message)
        return response

    def _get_row(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._execute(
                self._supabase.table(table).select('*').eq('id', row_id).limit(1)
            )
            return response.data[0] if response.data else None

        for row in self._load_table(table):
            if str(row.get('id')) == str(row_id):
                return row
        return None

    def _insert_row(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if self._supabase:
            response = self._execute(self._supabase.table(table).insert(record))
            if not response.data:
                raise DatabaseError(f'Insert into {table} returned no row.')
            return response.data[0]

        now = self._now()
        stored = {'id': str(uuid4()), 'created_at': now, 'updated_at': now}
        stored.update(record)
        rows = self._load_table(table)
        rows.append(stored)
        self._save_table(table, rows)
        return stored

    def _update_row(self, table: str, row_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        values = dict(changes, updated_at=self._now())
        if self._supabase:
            response = self._execute(
                self._supabase.table(table).update(values).eq('id', row_id)
            )
            return response.data[0] if response.data else None

        rows = self._load_table(table)
        for row in rows:
            if str(row.get('id')) == str(row_id):
                row.update(values)
                self._save_table(table, rows)
                return row
        return None

    def _delete_row(self, table: str, row_id: str) -> None:
        if self._supabase:
            self._execute(self._supabase.table(table).delete().eq('id', row_id))
            return

        rows = [row for row in self._load_table(table) if str(row.get('id')) != str(row_id)]
        self._save_table(table, rows)

    def _increment_views(self, table: str, row: Dict[str, Any]) -> None:
        views = int(row.get('views') or 0) + 1
        if self._supabase:
            self._execute(self._supabase.table(table).update({'views': views}).eq('id', row['id']))
            return

        rows = self._load_table(table)
        for stored in rows:
            if str(stored.get('id')) == str(row['id']):
                stored['views'] = views
        self._save_table(table, rows)

    def _with_project(self, application: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(application)
        project = self._get_row('projects', application.get('project_id', ''))
        data['projects'] = self._pick(project, _APPLICATION_PROJECT_FIELDS) if project else None
        return data

    def _check_local_password(self, email: str, password: str) -> Dict[str, Any]:
        for row in self._load_table('users'):
            if row.get('email', '').lower() != email.lower():
                continue
            stored = row.get('password_hash')
            if stored and check_password_hash(stored, password):
                return row
            break
        raise ValueError('Invalid credentials.')

    def _session_user(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'id': profile.get('id'),
            'email': profile.get('email'),
            'name': profile.get('name', ''),
            'role': profile.get('role'),
            'department': profile.get('department'),
        }

    def _load_table(self, table: str) -> List[Dict[str, Any]]:
        path = self._table_path(table)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning('Local table %s was not valid JSON', path.name)
            return []
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        return []

    def _save_table(self, table: str, rows: List[Dict[str, Any]]) -> None:
        path = self._table_path(table)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(rows, indent=2), encoding='utf-8')

    def _table_path(self, table: str) -> Path:
        safe = table.replace('/', '_')
        return self._data_dir / f'{safe}.json'

    @staticmethod
    def _public_user(row: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in row.items() if key != 'password_hash'}

    @staticmethod
    def _pick(row: Dict[str, Any], columns: Iterable[str]) -> Dict[str, Any]:
        return {column: row.get(column) for column in columns}

    @staticmethod
    def _sorted(rows: List[Dict[str, Any]], column: str, desc: bool = False) -> List[Dict[str, Any]]:
        return sorted(rows, key=lambda row: str(row.get(column) or ''), reverse=desc)

    @staticmethod
    def _matches(row: Dict[str, Any], fields: Sequence[str], search: str) -> bool:
        needle = search.lower()
        return any(needle in str(row.get(field) or '').lower() for field in fields)

    @staticmethod
    def _ilike_any(fields: Sequence[str], search: str) -> str:
        # PostgREST uses commas and parentheses as filter delimiters.
        term = ''.join(char for char in search if char not in ',()')
        return ','.join(f'{field}.ilike.%{term}%' for field in fields)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _get_env_value(*names: str) -> Optional[str]:
        for name in names:
            value = os.getenv(name)
            if value:
                return value
        return None
