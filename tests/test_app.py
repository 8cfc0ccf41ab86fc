import json
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import app as contact_app
from config import StoreConfig
from database import get_db_connection
from services.records import reset_record_service


@pytest.fixture
def client(tmp_path, monkeypatch):
    data_dir = tmp_path / 'data'
    config = StoreConfig(data_dir=data_dir)

    monkeypatch.setitem(contact_app.app.config, 'STORE_CONFIG', config)
    monkeypatch.setitem(contact_app.app.config, 'TESTING', True)
    monkeypatch.setattr(contact_app, '_db_bootstrapped', False)

    yield contact_app.app.test_client()

    reset_record_service()


def _post(client, action, data=None):
    # Browser clients send the JSON body as text/plain.
    response = client.post(
        '/',
        data=json.dumps({'action': action, 'data': data}),
        content_type='text/plain;charset=utf-8',
    )
    assert response.status_code == 200
    return response.get_json()


def test_first_request_creates_tables(client, tmp_path):
    response = client.get('/')

    assert response.status_code == 200
    payload = response.get_json()
    assert payload['success'] is True
    assert payload['data'] == {'contacts': [], 'activities': []}
    assert (tmp_path / 'data' / 'contact_manager.db').exists()


def test_saved_contact_is_listed(client):
    saved = _post(client, 'saveContact', {'name': 'Ada Lovelace', 'tags': ['vip'], 'type': 'Individual'})
    assert saved['success'] is True
    assert saved['data']['action'] == 'created'

    payload = client.get('/api/records').get_json()

    contacts = payload['data']['contacts']
    assert len(contacts) == 1
    assert contacts[0]['id'] == saved['data']['id']
    assert contacts[0]['tags'] == ['vip']
    assert list(contacts[0])[:4] == ['id', 'projectId', 'type', 'name']


def test_delete_contact_over_http_removes_activities(client):
    contact_id = _post(client, 'saveContact', {'name': 'Ada'})['data']['id']
    _post(client, 'saveActivity', {'contactId': contact_id, 'type': 'Call', 'metadata': {'minutes': 3}})

    deleted = _post(client, 'deleteContact', {'id': contact_id})

    assert deleted['data'] == {'id': contact_id, 'action': 'deleted', 'activitiesDeleted': 1}
    payload = client.get('/').get_json()
    assert payload['data'] == {'contacts': [], 'activities': []}


def test_errors_use_the_envelope_not_the_status_code(client):
    invalid = _post(client, 'nope', {})
    missing = client.post('/', data='')

    assert invalid['success'] is False
    assert invalid['error'] == 'Invalid action: nope'
    assert missing.status_code == 200
    assert missing.get_json()['error'] == 'No data provided in POST request'


def test_settings_over_http(client):
    _post(client, 'setSetting', {'key': 'theme', 'value': 'dark'})
    _post(client, 'setSetting', {'key': 'theme', 'value': 'light'})

    found = _post(client, 'getSetting', {'key': 'theme'})

    assert found['data'] == {'key': 'theme', 'value': 'light'}


def test_setup_endpoint_reports_tables(client):
    _post(client, 'saveContact', {'name': 'Ada'})

    payload = client.get('/api/setup').get_json()

    assert payload['success'] is True
    assert payload['data']['Contacts'] == {'exists': True, 'required': True, 'rows': 1}
    assert payload['data']['Activities']['exists'] is True
    assert payload['data']['Settings']['rows'] == 0


def test_missing_contacts_table_is_reported(client):
    client.get('/')
    config = contact_app.get_store_config()
    conn = get_db_connection(config)
    try:
        conn.execute('DROP TABLE "Contacts"')
        conn.commit()
    finally:
        conn.close()

    payload = client.get('/').get_json()

    assert payload['success'] is False
    assert 'Contacts table not found' in payload['error']
