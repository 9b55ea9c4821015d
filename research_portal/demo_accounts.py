"""Fixed demo accounts used to exercise the portal end to end."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from werkzeug.security import generate_password_hash

from .services.storage_service import DatabaseError, StorageService

logger = logging.getLogger(__name__)

STUDENT_EMAIL = 'student.test@iiitkottayam.ac.in'
TEACHER_EMAIL = 'teacher.test@iiitkottayam.ac.in'
ADMIN_EMAIL = 'admin.test@iiitkottayam.ac.in'

# Only these accounts are reported by ``/api/test-login``.
LOGIN_ALLOW_LIST = (STUDENT_EMAIL, TEACHER_EMAIL)

DEMO_ACCOUNTS: List[Dict[str, Any]] = [
    {
        'email': STUDENT_EMAIL,
        'password': 'TestStudent123!',
        'username': 'teststudent',
        'name': 'Test Student',
        'role': 'student',
        'department': 'Computer Science',
        'phone': '+91-9876543210',
    },
    {
        'email': TEACHER_EMAIL,
        'password': 'TestTeacher123!',
        'username': 'testteacher',
        'name': 'Dr. Test Teacher',
        'role': 'teacher',
        'department': 'Computer Science',
        'phone': '+91-9876543211',
    },
    {
        'email': ADMIN_EMAIL,
        'password': 'TestAdmin123!',
        'username': 'testadmin',
        'name': 'Test Admin',
        'role': 'admin',
        'department': 'Administration',
        'phone': '+91-9876543212',
    },
]

LOGIN_INSTRUCTIONS = [
    f'1. Try logging in with: {STUDENT_EMAIL} / TestStudent123!',
    f'2. Try logging in with: {TEACHER_EMAIL} / TestTeacher123!',
    '3. Students should redirect to homepage, teachers to /teacher dashboard',
    '4. Check the server log for auth redirect events',
]


def seed_demo_accounts(storage: StorageService) -> List[Dict[str, Any]]:
    """Upsert every demo account and report the outcome per email."""

    results: List[Dict[str, Any]] = []
    for account in DEMO_ACCOUNTS:
        row = {key: value for key, value in account.items() if key != 'password'}
        row.update({'email_verified': True, 'is_active': True})
        if storage.uses_supabase:
            auth_id = _create_auth_account(storage, account)
            if auth_id:
                row['id'] = auth_id
        else:
            row['password_hash'] = generate_password_hash(account['password'])

        try:
            stored = storage.upsert_user(row)
        except DatabaseError as exc:
            logger.error('demo_accounts.seed_failed', extra={'email': account['email'], 'error': exc.message})
            results.append({'email': account['email'], 'success': False, 'error': exc.message})
            continue

        results.append({'email': account['email'], 'success': True, 'id': stored.get('id')})
    return results


def _create_auth_account(storage: StorageService, account: Dict[str, Any]) -> str | None:
    metadata = {'name': account['name'], 'role': account['role']}
    try:
        return storage.create_auth_user(account['email'], account['password'], metadata)
    except Exception as exc:
        # Re-seeding hits "already registered"; the profile row is still upserted.
        logger.warning('demo_accounts.auth_user_failed', extra={'email': account['email'], 'error': str(exc)})
        return None
