# Overview: Pytest coverage for the HTTP API; status codes and response bodies per route.

import io

from partnerbooks.extensions import db
from partnerbooks.models import Partner, Receipt


def _create_partner(client, headers, **payload):
    response = client.post('/api/partners', json=payload, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['partner']


class TestHealth:

    def test_health_reports_database(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        body = response.get_json()
        assert body['status'] == 'ok'
        assert body['db']['status'] == 'healthy'
        assert body['version']


class TestPartnersApi:

    def test_create_with_initial_contribution(self, client, db_session, headers_a):
        response = client.post('/api/partners', json={
            'name': 'Salma',
            'email': 'SALMA@example.com',
            'initial_contribution_cents': 25000,
        }, headers=headers_a)

        assert response.status_code == 201
        body = response.get_json()
        assert body['partner']['email'] == 'salma@example.com'
        assert body['partner']['total_contributed_cents'] == 25000
        assert body['initial_transaction']['description'] == 'Initial contribution'

    def test_create_validation_errors_are_listed(self, client, db_session, headers_a):
        response = client.post('/api/partners', json={'name': 'S', 'email': 'nope'}, headers=headers_a)
        assert response.status_code == 400
        fields = {e['field'] for e in response.get_json()['errors']}
        assert 'name' in fields

    def test_multipart_create_stores_avatar(self, client, db_session, headers_a, blob_store):
        response = client.post(
            '/api/partners',
            data={'name': 'Avatar Partner', 'avatar': (io.BytesIO(b'\x89PNG fake'), 'face.png')},
            headers=headers_a,
            content_type='multipart/form-data',
        )
        assert response.status_code == 201
        assert response.get_json()['partner']['avatar_url'].startswith('memory://avatars/')

    def test_list_and_leaderboard_order_by_total(self, client, db_session, headers_a):
        _create_partner(client, headers_a, name='Small', initial_contribution_cents=100)
        _create_partner(client, headers_a, name='Large', initial_contribution_cents=900)
        _create_partner(client, headers_a, name='Nothing')

        listing = client.get('/api/partners?include_transactions=true', headers=headers_a).get_json()
        assert [p['name'] for p in listing['data']] == ['Large', 'Small', 'Nothing']
        assert listing['meta']['total'] == 3
        assert len(listing['data'][0]['recent_transactions']) == 1
        assert listing['data'][2]['last_contribution_at'] is None

        board = client.get('/api/partners/leaderboard?limit=2', headers=headers_a).get_json()['data']
        assert [(p['rank'], p['name']) for p in board] == [(1, 'Large'), (2, 'Small')]

    def test_detail_includes_transactions(self, client, db_session, headers_a):
        partner = _create_partner(client, headers_a, name='Detail', initial_contribution_cents=500)
        response = client.get(f"/api/partners/{partner['id']}", headers=headers_a)
        assert response.status_code == 200
        body = response.get_json()
        assert body['partner']['total_contributed_cents'] == 500
        assert body['meta']['total_transactions'] == 1


class TestTransactionsApi:

    def test_idempotency_header(self, client, db_session, headers_a, partner_a):
        headers = dict(headers_a, **{'Idempotency-Key': 'req-123'})
        payload = {'partner_id': partner_a.id, 'amount_cents': 5000}

        first = client.post('/api/transactions', json=payload, headers=headers)
        second = client.post('/api/transactions', json=payload, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()['duplicate'] is True
        assert second.get_json()['transaction']['id'] == first.get_json()['transaction']['id']
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 5000

    def test_key_reuse_is_conflict(self, client, db_session, headers_a, partner_a):
        headers = dict(headers_a, **{'Idempotency-Key': 'req-123'})
        client.post('/api/transactions', json={'partner_id': partner_a.id, 'amount_cents': 5000}, headers=headers)

        response = client.post('/api/transactions', json={'partner_id': partner_a.id, 'amount_cents': 1}, headers=headers)
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'idempotency_key_reuse'

    def test_amend_and_undo_flow(self, client, db_session, headers_a, partner_a):
        created = client.post(
            '/api/transactions', json={'partner_id': partner_a.id, 'amount_cents': 50000}, headers=headers_a,
        ).get_json()['transaction']

        amended = client.patch(f"/api/transactions/{created['id']}", json={'amount_cents': 70000}, headers=headers_a)
        assert amended.status_code == 200
        assert amended.get_json()['adjustment']['amount_cents'] == 20000

        undo = client.post(f"/api/transactions/{created['id']}/undo", json={'reason': 'Wrong partner'}, headers=headers_a)
        assert undo.status_code == 201
        assert undo.get_json()['transaction']['amount_cents'] == -70000

        again = client.post(f"/api/transactions/{created['id']}/undo", headers=headers_a)
        assert again.status_code == 409
        assert again.get_json()['kind'] == 'invariant_violation'

        detail = client.get(f"/api/transactions/{created['id']}", headers=headers_a).get_json()['transaction']
        assert detail['is_undone'] is True
        assert len(detail['adjustments']) == 1
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 0

    def test_list_filters_and_bad_query(self, client, db_session, headers_a, partner_a):
        client.post('/api/transactions', json={'partner_id': partner_a.id, 'amount_cents': 100}, headers=headers_a)

        listing = client.get(f'/api/transactions?partner_id={partner_a.id}&type=contribution', headers=headers_a)
        assert listing.status_code == 200
        assert listing.get_json()['meta']['total'] == 1

        bad = client.get('/api/transactions?type=gift', headers=headers_a)
        assert bad.status_code == 400

    def test_missing_transaction(self, client, db_session, headers_a):
        response = client.get('/api/transactions/99999', headers=headers_a)
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'not_found'


class TestSalesAndAllocationsApi:

    def test_allocation_capacity_is_conflict(self, client, db_session, headers_a):
        entry = client.post(
            '/api/cost-entries', json={'description': 'Freight', 'total_cost_cents': 100000}, headers=headers_a,
        ).get_json()['cost_entry']
        sale = client.post('/api/sales', json={
            'product_name': 'Yarn', 'sale_total_cents': 200000, 'payment_method': 'cash', 'date': '2026-03-05',
        }, headers=headers_a).get_json()['sale']

        ok = client.post('/api/allocations', json={
            'sale_id': sale['id'], 'cost_entry_id': entry['id'], 'allocated_amount_cents': 40000,
        }, headers=headers_a)
        assert ok.status_code == 201

        over = client.post('/api/allocations', json={
            'sale_id': sale['id'], 'cost_entry_id': entry['id'], 'allocated_amount_cents': 70000,
        }, headers=headers_a)
        assert over.status_code == 409
        assert over.get_json()['details']['max_allowed_cents'] == 60000

        summary = client.get('/api/sales/summary?from=2026-03-01&to=2026-03-31', headers=headers_a)
        assert summary.status_code == 200
        assert summary.get_json()['summary']['total_profit_cents'] == 160000

        refund = client.post(f"/api/sales/{sale['id']}/refund", headers=headers_a)
        assert refund.status_code == 200
        assert refund.get_json()['cost_entries'][0]['allocated_amount_cents'] == 0

        detail = client.get(f"/api/cost-entries/{entry['id']}", headers=headers_a).get_json()['cost_entry']
        assert detail['allocations'][0]['is_reversed'] is True

    def test_summary_requires_range(self, client, db_session, headers_a):
        response = client.get('/api/sales/summary', headers=headers_a)
        assert response.status_code == 400


class TestSyncApi:

    def test_partial_failure_is_200(self, client, db_session, headers_a, partner_a):
        response = client.post('/api/sync/queue', json={'items': [
            {'local_id': 'q1', 'action': 'create_contribution',
             'payload': {'partner_id': partner_a.id, 'amount_cents': 300}},
            {'local_id': 'q2', 'action': 'create_contribution',
             'payload': {'partner_id': partner_a.id, 'amount_cents': -1}},
        ]}, headers=headers_a)

        assert response.status_code == 200
        assert response.get_json()['counts'] == {'ok': 1, 'duplicate': 0, 'error': 1}


class TestUploadsAndExports:

    def test_receipt_upload_and_link(self, client, db_session, headers_a, partner_a):
        upload = client.post(
            '/api/uploads/receipts',
            data={'file': (io.BytesIO(b'%PDF-1.4 receipt'), 'receipt.pdf')},
            headers=headers_a,
            content_type='multipart/form-data',
        )
        assert upload.status_code == 201
        receipt = upload.get_json()['receipt']
        assert receipt['url'].startswith('memory://receipts/')

        created = client.post('/api/transactions', json={
            'partner_id': partner_a.id, 'amount_cents': 1000, 'receipt_id': receipt['id'],
        }, headers=headers_a).get_json()['transaction']

        assert created['receipt_url'] == receipt['url']
        assert db.session.get(Receipt, receipt['id']).transaction_id == created['id']

    def test_disallowed_upload_type(self, client, db_session, headers_a):
        response = client.post(
            '/api/uploads/receipts',
            data={'file': (io.BytesIO(b'MZ'), 'tool.exe')},
            headers=headers_a,
            content_type='multipart/form-data',
        )
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'upload_error'

    def test_csv_export(self, client, db_session, headers_a, partner_a):
        client.post('/api/transactions', json={
            'partner_id': partner_a.id, 'amount_cents': 123456, 'context': 'Seed money',
        }, headers=headers_a)

        response = client.get('/api/exports/transactions', headers=headers_a)

        assert response.status_code == 200
        assert response.mimetype == 'text/csv'
        lines = response.get_data(as_text=True).strip().splitlines()
        assert len(lines) == 2
        assert '1234.56' in lines[1]
        assert 'Seed money' in lines[1]
