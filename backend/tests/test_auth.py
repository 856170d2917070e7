# Overview: Pytest coverage for registration, login throttling, sessions and permissions.

"""
Authentication and Authorization Tests

SECURITY TESTS: sessions scope every request to one organization, roles
gate writes, and repeated bad passwords lock the account.
"""

import io
from datetime import timedelta

from partnerbooks.extensions import db
from partnerbooks.models import SecurityEvent, SessionToken, User
from partnerbooks.services import login_throttle_service, session_service
from partnerbooks.time_utils import utcnow

from conftest import PASSWORD, auth_headers, get_auth_token


class TestRegistration:

    def test_register_creates_owner_and_organization(self, client, db_session):
        response = client.post('/api/auth/register', json={
            'name': 'Nadia Rahman',
            'email': 'Nadia@Example.com',
            'password': PASSWORD,
            'organization_name': 'Rahman Traders',
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['user']['email'] == 'nadia@example.com'
        assert body['organization']['name'] == 'Rahman Traders'
        assert body['roles'] == ['owner']
        assert 'MANAGE_USERS' in body['permissions']
        assert body['token']

    def test_duplicate_email_is_rejected(self, client, db_session, owner_a):
        response = client.post('/api/auth/register', json={
            'name': 'Another Alice',
            'email': 'alice@acme.test',
            'password': PASSWORD,
        })
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'validation_error'

    def test_weak_password_is_rejected(self, client, db_session):
        response = client.post('/api/auth/register', json={
            'name': 'Weak Pass',
            'email': 'weak@example.com',
            'password': 'password',
        })
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'password'


class TestLogin:

    def test_login_returns_session_token(self, client, db_session, owner_a):
        response = client.post('/api/auth/login', json={'email': 'alice@acme.test', 'password': PASSWORD})

        assert response.status_code == 200
        token = response.get_json()['token']

        me = client.get('/api/auth/me', headers=auth_headers(token))
        assert me.status_code == 200
        assert me.get_json()['org_id'] == owner_a.org_id

    def test_missing_credentials(self, client, db_session):
        response = client.post('/api/auth/login', json={'email': 'alice@acme.test'})
        assert response.status_code == 400

    def test_repeated_failures_lock_the_account(self, client, db_session, owner_a):
        bad = {'email': 'alice@acme.test', 'password': 'WrongPass1!'}

        statuses = [client.post('/api/auth/login', json=bad).status_code for _ in range(4)]
        assert statuses == [401, 401, 401, 401]

        locked = client.post('/api/auth/login', json=bad)
        assert locked.status_code == 429
        assert locked.get_json()['locked'] is True

        # even the right password is refused while locked
        response = client.post('/api/auth/login', json={'email': 'alice@acme.test', 'password': PASSWORD})
        assert response.status_code == 429

        status = login_throttle_service.get_lockout_status('alice@acme.test')
        assert status['locked'] is True
        assert db_session.query(SecurityEvent).filter_by(event_type='LOGIN_FAILED').count() == 5

    def test_warning_when_few_attempts_remain(self, client, db_session, owner_a):
        bad = {'email': 'alice@acme.test', 'password': 'WrongPass1!'}
        for _ in range(2):
            client.post('/api/auth/login', json=bad)

        response = client.post('/api/auth/login', json=bad)
        assert response.status_code == 401
        assert '2 attempts remaining' in response.get_json()['warning']


class TestSessions:

    def test_missing_token(self, client, db_session):
        assert client.get('/api/auth/me').status_code == 401

    def test_invalid_token(self, client, db_session):
        assert client.get('/api/auth/me', headers=auth_headers('not-a-token')).status_code == 401

    def test_logout_revokes_token(self, client, db_session, headers_a):
        assert client.post('/api/auth/logout', headers=headers_a).status_code == 200
        assert client.get('/api/auth/me', headers=headers_a).status_code == 401


class TestRefresh:

    def test_refresh_rotates_token(self, client, db_session, owner_a):
        old_token = get_auth_token(owner_a)

        response = client.post('/api/auth/refresh', headers=auth_headers(old_token))

        assert response.status_code == 200
        new_token = response.get_json()['token']
        assert new_token != old_token
        assert response.get_json()['org_id'] == owner_a.org_id

        assert client.get('/api/auth/me', headers=auth_headers(old_token)).status_code == 401
        assert client.get('/api/auth/me', headers=auth_headers(new_token)).status_code == 200

        old = db_session.query(SessionToken).filter_by(token_hash=session_service.hash_token(old_token)).one()
        assert old.is_revoked is True
        assert old.revoked_reason == 'Rotated on refresh'

    def test_token_in_body_is_accepted(self, client, db_session, owner_a):
        response = client.post('/api/auth/refresh', json={'token': get_auth_token(owner_a)})
        assert response.status_code == 200

    def test_rotated_token_cannot_refresh_again(self, client, db_session, owner_a):
        token = get_auth_token(owner_a)
        assert client.post('/api/auth/refresh', headers=auth_headers(token)).status_code == 200

        again = client.post('/api/auth/refresh', headers=auth_headers(token))
        assert again.status_code == 401

    def test_missing_or_unknown_token(self, client, db_session):
        assert client.post('/api/auth/refresh').status_code == 401
        assert client.post('/api/auth/refresh', headers=auth_headers('not-a-token')).status_code == 401


class TestProfile:

    def test_update_contact_fields(self, client, db_session, owner_a, headers_a):
        response = client.patch('/api/users/me', json={
            'name': '  Alice Rahman ',
            'phone': '+8801700000000',
            'company': 'Acme Jute',
        }, headers=headers_a)

        assert response.status_code == 200
        user = response.get_json()['user']
        assert (user['name'], user['phone'], user['company']) == ('Alice Rahman', '+8801700000000', 'Acme Jute')
        assert db_session.query(SecurityEvent).filter_by(event_type='PROFILE_UPDATED').count() == 1

    def test_blank_value_clears_field(self, client, db_session, owner_a, headers_a):
        client.patch('/api/users/me', json={'company': 'Acme Jute'}, headers=headers_a)

        response = client.patch('/api/users/me', json={'company': ''}, headers=headers_a)

        assert response.status_code == 200
        assert db.session.get(User, owner_a.id).company is None

    def test_avatar_upload(self, client, db_session, headers_a):
        response = client.patch(
            '/api/users/me',
            data={'avatar': (io.BytesIO(b'\x89PNG fake'), 'me.png')},
            headers=headers_a,
            content_type='multipart/form-data',
        )
        assert response.status_code == 200
        assert response.get_json()['user']['avatar_url'].startswith('memory://avatars/')

    def test_disallowed_avatar_type(self, client, db_session, headers_a):
        response = client.patch(
            '/api/users/me',
            data={'avatar': (io.BytesIO(b'MZ'), 'me.exe')},
            headers=headers_a,
            content_type='multipart/form-data',
        )
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'upload_error'

    def test_email_cannot_change(self, client, db_session, headers_a):
        response = client.patch('/api/users/me', json={'email': 'new@acme.test'}, headers=headers_a)
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'email'

    def test_empty_and_unknown_fields_are_rejected(self, client, db_session, headers_a):
        assert client.patch('/api/users/me', json={}, headers=headers_a).status_code == 400

        response = client.patch('/api/users/me', json={'is_active': False}, headers=headers_a)
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'is_active'

    def test_viewer_may_edit_own_profile(self, client, db_session, viewer_a, viewer_headers):
        response = client.patch('/api/users/me', json={'phone': '01800'}, headers=viewer_headers)
        assert response.status_code == 200
        assert db.session.get(User, viewer_a.id).phone == '01800'

    def test_requires_session(self, client, db_session):
        assert client.patch('/api/users/me', json={'phone': '01800'}).status_code == 401


class TestPermissions:

    def test_viewer_can_read(self, client, db_session, viewer_headers, partner_a):
        response = client.get('/api/partners', headers=viewer_headers)
        assert response.status_code == 200
        assert response.get_json()['meta']['total'] == 1

    def test_viewer_cannot_write(self, client, db_session, viewer_headers, partner_a):
        response = client.post(
            '/api/transactions',
            json={'partner_id': partner_a.id, 'amount_cents': 100},
            headers=viewer_headers,
        )
        assert response.status_code == 403
        assert response.get_json()['required_permission'] == 'RECORD_CONTRIBUTION'
        assert db_session.query(SecurityEvent).filter_by(event_type='PERMISSION_DENIED').count() == 1

    def test_other_org_partner_is_invisible(self, client, db_session, headers_b, partner_a):
        response = client.get(f'/api/partners/{partner_a.id}', headers=headers_b)
        assert response.status_code == 404


class TestMaintenance:

    def test_cleanup_prunes_only_old_security_events(self, app, db_session, owner_a):
        for age_days in (120, 1):
            db_session.add(SecurityEvent(
                org_id=owner_a.org_id,
                user_id=owner_a.id,
                event_type='LOGIN_SUCCESS',
                success=True,
                occurred_at=utcnow() - timedelta(days=age_days),
            ))
        db_session.commit()

        result = app.test_cli_runner().invoke(args=['maintenance', 'cleanup-security-events'])

        assert result.exit_code == 0
        assert 'Deleted 1 security events' in result.output
        assert db_session.query(SecurityEvent).count() == 1
