import io

from PIL import Image

from tests.app_helpers import (
    TEST_PASSWORD,
    failing_aggregator,
    fake_aggregator,
    fake_social_scraper,
    insert_game,
)
from codes.store import CodeStore


def test_api_requires_login(app):
    client = app.test_client()

    resp = client.get('/api/games')
    assert resp.status_code == 401
    assert resp.get_json() == {'success': False, 'error': 'Unauthorized.'}

    resp = client.get('/')
    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/login')


def test_login_with_password(app):
    client = app.test_client()

    resp = client.post('/login', data={'password': 'wrong'})
    assert resp.status_code == 401

    resp = client.post('/login', json={'password': TEST_PASSWORD})
    assert resp.status_code == 200
    assert client.get('/api/games').status_code == 200

    client.get('/logout')
    assert client.get('/api/games').status_code == 401


def test_dashboard_counts(client, app_db):
    insert_game(app_db, is_published=True)

    resp = client.get('/')
    assert resp.status_code == 200
    assert resp.get_json() == {'games': 1, 'published_games': 1, 'active_codes': 0}


def test_create_game_runs_import(app, client):
    aggregator = fake_aggregator(codes=[{'code': 'gems-100'}])
    app.config['CODE_AGGREGATOR'] = aggregator

    resp = client.post(
        '/api/games',
        json={
            'name': 'Blox Fruits',
            'slug': 'blox-fruits',
            'source_url': 'https://example.com/blox-fruits',
        },
    )

    assert resp.status_code == 201
    data = resp.get_json()
    assert data['success'] is True
    assert data['codes_upserted'] == 1
    aggregator.assert_called_once()

    resp = client.get('/api/games/blox-fruits')
    assert resp.status_code == 200
    assert resp.get_json()['codes']['active'][0]['code'] == 'GEMS-100'


def test_create_game_errors(client, app_db):
    resp = client.post('/api/games', json={'name': '', 'slug': 'x'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'name is required.'

    insert_game(app_db, slug='taken')
    resp = client.post('/api/games', json={'name': 'Taken', 'slug': 'taken'})
    assert resp.status_code == 409

    resp = client.post('/api/games', json=['not', 'an', 'object'])
    assert resp.status_code == 400


def test_get_unknown_game_returns_404(client):
    resp = client.get('/api/games/nope')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'Game not found'


def test_refresh_codes_endpoint(app, client, app_db):
    game_id = insert_game(app_db, slug='doors', source_url='https://example.com/doors')
    CodeStore(app_db).upsert_code(game_id, 'STALE', status='active')
    app.config['CODE_AGGREGATOR'] = fake_aggregator(codes=[{'code': 'FRESH'}])

    resp = client.post('/api/games/doors/refresh-codes')
    assert resp.status_code == 200
    assert resp.get_json() == {
        'success': True,
        'found': 1,
        'upserted': 1,
        'removed': 1,
        'expired': 0,
    }

    app.config['CODE_AGGREGATOR'] = failing_aggregator('blocked')
    resp = client.post('/api/games/doors/refresh-codes')
    assert resp.status_code == 502
    assert resp.get_json() == {'success': False, 'error': 'blocked'}

    assert client.post('/api/games/missing/refresh-codes').status_code == 404


def test_social_links_endpoint(app, client, app_db):
    insert_game(app_db, slug='doors', source_url='https://example.com/doors')
    insert_game(app_db, slug='bare')
    app.config['SOCIAL_LINK_SCRAPER'] = fake_social_scraper(
        {'twitter': 'https://x.com/doors'}
    )

    resp = client.post('/api/games/doors/social-links')
    assert resp.status_code == 200
    assert resp.get_json()['updated_fields'] == ['twitter_link']

    resp = client.post('/api/games/bare/social-links')
    assert resp.status_code == 400


def test_code_endpoints(client, app_db):
    game_id = insert_game(app_db)

    resp = client.post('/api/codes', json={'game_id': game_id, 'code': 'manual1'})
    assert resp.status_code == 200
    code_id = CodeStore(app_db).list_codes(game_id)[0]['id']

    resp = client.patch(f'/api/codes/{code_id}/status', json={'status': 'check'})
    assert resp.status_code == 200
    assert CodeStore(app_db).list_codes(game_id)[0]['status'] == 'check'

    resp = client.patch(f'/api/codes/{code_id}/status', json={'status': 'bogus'})
    assert resp.status_code == 400

    assert client.delete(f'/api/codes/{code_id}').status_code == 200
    assert client.delete(f'/api/codes/{code_id}').status_code == 404


def test_export_csv(client, app_db):
    insert_game(app_db, slug='doors', name='Doors, The Game')

    resp = client.get('/api/games/export.csv')
    assert resp.status_code == 200
    assert resp.mimetype == 'text/csv'
    body = resp.get_data(as_text=True)
    assert body.startswith('id,name,slug,')
    assert '"Doors, The Game"' in body


def test_upload_and_delete_game_media(client, app_db):
    game_id = insert_game(app_db, slug='doors')
    buffer = io.BytesIO()
    Image.new('RGB', (64, 48), (200, 30, 30)).save(buffer, format='PNG')
    buffer.seek(0)

    resp = client.post(
        '/api/games/upload-image',
        data={'file': (buffer, 'shot.png'), 'slug': 'doors', 'type': 'gallery'},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 201
    url = resp.get_json()['url']
    assert url.startswith('/media/games/doors/gallery/shot-')

    assert client.get(url).status_code == 200

    resp = client.delete(f'/api/games/{game_id}')
    assert resp.status_code == 200
    assert client.get(url).status_code == 404
    assert client.get('/api/authors').get_json() == {'authors': []}


def test_upload_without_file(client):
    resp = client.post('/api/games/upload-image', data={}, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'No file provided'
