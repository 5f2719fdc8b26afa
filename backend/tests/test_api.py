"""
HTTP surface: status codes, error bodies and role checks.

Business rules are covered in the service tests; these check that the
routes map outcomes to the right responses.
"""

import pytest

from grocer.models import Inventory, Notification

from conftest import auth_headers, get_auth_token


class TestSystem:
    def test_health(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'ok'
        assert response.json['checks']['database']['status'] == 'healthy'

    def test_version(self, client, db_session):
        response = client.get('/version')
        assert response.status_code == 200
        assert response.json['name'] == 'grocer'

    def test_unknown_route_is_json_404(self, client, db_session):
        response = client.get('/api/nope')
        assert response.status_code == 404
        assert response.json['kind'] == 'http_error'


class TestAuth:
    def test_login_returns_token(self, client, admin_user):
        response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'Password123!'})
        assert response.status_code == 200
        assert len(response.json['token']) == 64
        assert response.json['user']['username'] == 'admin'
        assert 'password_hash' not in response.json['user']
        assert response.json['expires_at'].endswith('Z')

    def test_bad_password(self, client, admin_user):
        response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'Wrong123!'})
        assert response.status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post('/api/auth/login', json={'username': 'admin'}).status_code == 400

    def test_protected_route_requires_token(self, client, db_session):
        response = client.get('/api/products')
        assert response.status_code == 401
        assert response.json['kind'] == 'unauthenticated'

    def test_garbage_token(self, client, db_session):
        response = client.get('/api/products', headers=auth_headers('nope'))
        assert response.status_code == 401

    def test_me_and_logout(self, client, admin_headers):
        me = client.get('/api/auth/me', headers=admin_headers)
        assert me.status_code == 200
        assert me.json['user']['role'] == 'admin'

        assert client.post('/api/auth/logout', headers=admin_headers).status_code == 200
        assert client.get('/api/auth/me', headers=admin_headers).status_code == 401


class TestSalesApi:
    def test_create_sale(self, client, make_product, cashier_headers):
        product, _ = make_product(price_cents=250, quantity=10)

        response = client.post('/api/sales', headers=cashier_headers, json={
            'items': [{'product_id': product.id, 'quantity': 2}],
            'tax_cents': 0,
        })

        assert response.status_code == 201
        body = response.json
        assert body['total_cents'] == 500
        assert body['status'] == 'completed'
        assert body['receipt_number'] == 'INV-1001'
        assert body['items'][0]['unit_price_cents'] == 250
        assert body['user']['username'] == 'cashier'

    def test_insufficient_stock_is_400(self, client, db_session, make_product, cashier_headers):
        product, inventory = make_product(name='Tea', quantity=1)

        response = client.post('/api/sales', headers=cashier_headers, json={
            'items': [{'product_id': product.id, 'quantity': 2}],
        })

        assert response.status_code == 400
        assert response.json['kind'] == 'insufficient_stock'
        assert 'Tea' in response.json['error']
        db_session.expire_all()
        assert db_session.get(Inventory, inventory.id).quantity == 1

    def test_unknown_product_is_400(self, client, db_session, cashier_headers):
        response = client.post('/api/sales', headers=cashier_headers, json={
            'items': [{'product_id': 9999, 'quantity': 1}],
        })
        assert response.status_code == 400
        assert response.json['kind'] == 'not_found'

    def test_unknown_customer_is_400(self, client, make_product, cashier_headers):
        product, _ = make_product()
        response = client.post('/api/sales', headers=cashier_headers, json={
            'customer_id': 555,
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert response.status_code == 400

    @pytest.mark.parametrize('payload', [
        {'items': []},
        {'items': [{'product_id': 1, 'quantity': '2'}]},
        {'items': [{'product_id': 1, 'quantity': 1}], 'surprise': True},
    ])
    def test_malformed_sale_is_400(self, client, db_session, cashier_headers, payload):
        response = client.post('/api/sales', headers=cashier_headers, json=payload)
        assert response.status_code == 400
        assert response.json['kind'] == 'invalid_input'

    def test_storekeeper_cannot_sell(self, client, make_product, storekeeper_headers):
        product, _ = make_product()
        response = client.post('/api/sales', headers=storekeeper_headers, json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert response.status_code == 403
        assert response.json['kind'] == 'permission_denied'

    def test_cancel_then_cancel_again(self, client, db_session, make_product, admin_headers):
        product, inventory = make_product(quantity=10)
        sale = client.post('/api/sales', headers=admin_headers, json={
            'items': [{'product_id': product.id, 'quantity': 4}],
        }).json

        first = client.delete(f"/api/sales/{sale['id']}", headers=admin_headers)
        assert first.status_code == 200
        assert first.json['status'] == 'cancelled'
        assert first.json['payment_status'] == 'refunded'

        second = client.delete(f"/api/sales/{sale['id']}", headers=admin_headers)
        assert second.status_code == 400
        assert second.json['kind'] == 'already_cancelled'

        db_session.expire_all()
        assert db_session.get(Inventory, inventory.id).quantity == 10

    def test_cancel_unknown_sale_is_404(self, client, db_session, admin_headers):
        assert client.delete('/api/sales/4040', headers=admin_headers).status_code == 404

    def test_cashier_cannot_cancel(self, client, make_product, cashier_headers):
        product, _ = make_product()
        sale = client.post('/api/sales', headers=cashier_headers, json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        }).json
        assert client.delete(f"/api/sales/{sale['id']}", headers=cashier_headers).status_code == 403

    def test_list_and_get(self, client, make_product, cashier_headers):
        product, _ = make_product()
        created = client.post('/api/sales', headers=cashier_headers, json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        }).json

        listing = client.get('/api/sales', headers=cashier_headers)
        assert listing.status_code == 200
        assert listing.json['total'] == 1

        detail = client.get(f"/api/sales/{created['id']}", headers=cashier_headers)
        assert detail.status_code == 200
        assert len(detail.json['items']) == 1

    @pytest.mark.parametrize("limit", [-1, 0])
    def test_list_limit_below_one_is_clamped(self, client, make_product, cashier_headers, limit):
        product, _ = make_product()
        for _ in range(2):
            client.post('/api/sales', headers=cashier_headers, json={
                'items': [{'product_id': product.id, 'quantity': 1}],
            })

        listing = client.get(f'/api/sales?limit={limit}', headers=cashier_headers)
        assert listing.status_code == 200
        assert listing.json['count'] == 1
        assert listing.json['total'] == 2


class TestInventoryApi:
    def test_adjust(self, client, db_session, make_product, storekeeper_headers):
        _, inventory = make_product(quantity=10)

        response = client.patch(f'/api/inventory/{inventory.id}/adjust', headers=storekeeper_headers, json={
            'delta': -3, 'reason': 'Breakage',
        })

        assert response.status_code == 200
        assert response.json['previous_quantity'] == 10
        assert response.json['new_quantity'] == 7
        assert response.json['inventory']['quantity'] == 7
        assert response.json['transaction']['quantity_delta'] == -3

    def test_adjust_below_zero_is_400(self, client, make_product, storekeeper_headers):
        _, inventory = make_product(quantity=2)
        response = client.patch(f'/api/inventory/{inventory.id}/adjust', headers=storekeeper_headers, json={
            'delta': -3,
        })
        assert response.status_code == 400
        assert response.json['kind'] == 'insufficient_stock'

    def test_adjust_zero_is_400(self, client, make_product, storekeeper_headers):
        _, inventory = make_product(quantity=2)
        response = client.patch(f'/api/inventory/{inventory.id}/adjust', headers=storekeeper_headers, json={
            'delta': 0,
        })
        assert response.status_code == 400

    def test_adjust_unknown_is_404(self, client, db_session, storekeeper_headers):
        response = client.patch('/api/inventory/9999/adjust', headers=storekeeper_headers, json={'delta': 1})
        assert response.status_code == 404

    def test_cashier_cannot_adjust(self, client, make_product, cashier_headers):
        _, inventory = make_product(quantity=2)
        response = client.patch(f'/api/inventory/{inventory.id}/adjust', headers=cashier_headers, json={
            'delta': 1,
        })
        assert response.status_code == 403

    def test_put_quantity_rejected(self, client, make_product, storekeeper_headers):
        _, inventory = make_product(quantity=2)
        response = client.put(f'/api/inventory/{inventory.id}', headers=storekeeper_headers, json={
            'quantity': 100,
        })
        assert response.status_code == 400

    def test_low_stock_adjust_creates_notification(self, client, db_session, make_product, admin_headers):
        _, inventory = make_product(quantity=10, min_stock_level=5)

        response = client.patch(f'/api/inventory/{inventory.id}/adjust', headers=admin_headers, json={
            'delta': -6,
        })

        assert response.json['low_stock'] is True
        db_session.expire_all()
        assert db_session.query(Notification).count() == 1
        inbox = client.get('/api/notifications?unread=true', headers=admin_headers)
        assert inbox.json['count'] == 1
        assert client.get('/api/notifications/unread-count', headers=admin_headers).json['unread'] == 1

    def test_transactions_listing(self, client, make_product, admin_headers):
        _, inventory = make_product(quantity=10)
        client.patch(f'/api/inventory/{inventory.id}/adjust', headers=admin_headers, json={'delta': 5})

        response = client.get(f'/api/inventory/{inventory.id}/transactions', headers=admin_headers)
        assert response.status_code == 200
        assert [row['quantity_delta'] for row in response.json['items']] == [5, 10]


class TestCatalogApi:
    def test_duplicate_barcode_is_409(self, client, db_session, admin_headers):
        first = client.post('/api/products', headers=admin_headers, json={
            'name': 'Cola', 'price_cents': 150, 'barcode': '5449000000996',
        })
        assert first.status_code == 201

        second = client.post('/api/products', headers=admin_headers, json={
            'name': 'Other Cola', 'price_cents': 150, 'barcode': '5449000000996',
        })
        assert second.status_code == 409
        assert second.json['kind'] == 'conflict'

    def test_generate_barcode_query_flag(self, client, db_session, admin_headers):
        response = client.post('/api/products?generate_barcode=true', headers=admin_headers, json={
            'name': 'Bakery Loaf', 'price_cents': 450,
        })
        assert response.status_code == 201
        assert response.json['barcode'].startswith('200')
        assert response.json['is_generated_barcode'] is True

    def test_numeric_string_price_is_400(self, client, db_session, admin_headers):
        response = client.post('/api/products', headers=admin_headers, json={
            'name': 'Eggs', 'price_cents': '250',
        })
        assert response.status_code == 400
        assert response.json['kind'] == 'invalid_input'

    def test_numeric_string_min_stock_level_is_400(self, client, make_product, storekeeper_headers):
        product, _ = make_product(with_inventory=False)
        response = client.post('/api/inventory', headers=storekeeper_headers, json={
            'product_id': product.id, 'min_stock_level': '5',
        })
        assert response.status_code == 400
        assert response.json['kind'] == 'invalid_input'

    def test_cashier_cannot_create_product(self, client, db_session, cashier_headers):
        response = client.post('/api/products', headers=cashier_headers, json={'name': 'X', 'price_cents': 1})
        assert response.status_code == 403

    def test_duplicate_customer_email_is_409(self, client, db_session, cashier_headers):
        assert client.post('/api/customers', headers=cashier_headers, json={
            'name': 'Kim', 'email': 'kim@example.com',
        }).status_code == 201
        response = client.post('/api/customers', headers=cashier_headers, json={
            'name': 'Kim Again', 'email': 'KIM@example.com',
        })
        assert response.status_code == 409

    def test_unknown_product_is_404(self, client, db_session, admin_headers):
        assert client.get('/api/products/12345', headers=admin_headers).status_code == 404


class TestAdminApi:
    def test_create_user_and_login(self, client, db_session, admin_headers):
        response = client.post('/api/users', headers=admin_headers, json={
            'username': 'newbie',
            'email': 'newbie@grocer.test',
            'full_name': 'New Bie',
            'password': 'Str0ng-Pass!',
            'role': 'cashier',
        })
        assert response.status_code == 201
        assert get_auth_token(client, 'newbie', 'Str0ng-Pass!') is not None

    def test_deactivated_user_token_stops_working(self, client, db_session, admin_headers, cashier_user, cashier_headers):
        assert client.get('/api/auth/me', headers=cashier_headers).status_code == 200
        response = client.post(f'/api/users/{cashier_user.id}/deactivate', headers=admin_headers)
        assert response.status_code == 200
        assert client.get('/api/auth/me', headers=cashier_headers).status_code == 401

    def test_cashier_cannot_view_other_users(self, client, db_session, admin_user, cashier_headers):
        assert client.get(f'/api/users/{admin_user.id}', headers=cashier_headers).status_code == 403

    def test_settings_update_admin_only(self, client, db_session, admin_headers, manager_headers):
        assert client.put('/api/settings', headers=manager_headers, json={'tax_rate_bps': 500}).status_code == 403
        response = client.put('/api/settings', headers=admin_headers, json={'tax_rate_bps': 500})
        assert response.status_code == 200
        assert response.json['tax_rate_bps'] == 500

    def test_reports_role_gate(self, client, db_session, admin_headers, cashier_headers):
        assert client.get('/api/reports/sales', headers=cashier_headers).status_code == 403
        response = client.get('/api/reports/sales', headers=admin_headers)
        assert response.status_code == 200
        assert response.json['summary']['sales_count'] == 0
