import os

import pytest
from flask import Flask, session

from rocket.core.exceptions import TemplateNotFoundError, TemplateRenderError
from rocket.core.render import Renderer, TemplateData, create_view_set
from rocket.core.sessions import Session


def write(path, text):
    with open(path, 'w') as fh:
        fh.write(text)


@pytest.fixture
def views(root):
    views_path = os.path.join(root, 'views')
    os.makedirs(views_path)
    write(os.path.join(views_path, 'home.jet'),
          "{{ 'yes' if is_authenticated else 'no' }}|{{ flash }}|{{ greeting }}|{{ server_name }}")
    write(os.path.join(views_path, 'home.page.tmpl'), "{{ string_map.title }}|{{ port }}")
    return views_path


def make_client(renderer):
    app = Flask(__name__)
    app.secret_key = 'test'
    app.session_interface = Session().init_session()

    @app.route('/home')
    def home():
        return renderer.page('home', {'greeting': 'hi', 'flash': 'from-variables'})

    @app.route('/login')
    def login():
        session['userID'] = 1
        return 'ok'

    @app.route('/save')
    def save():
        session['flash'] = 'Saved'
        return 'ok'

    return app.test_client()


def jet_renderer(root, views, **kwargs):
    return Renderer('jet-like', root, create_view_set(views), port='8080',
                    server_name='example.com', secure=True, **kwargs)


def test_authenticated_follows_user_id(root, views):
    client = make_client(jet_renderer(root, views))

    assert client.get('/home').text.startswith('no|')
    client.get('/login')
    assert client.get('/home').text.startswith('yes|')


def test_flash_shown_exactly_once(root, views):
    client = make_client(jet_renderer(root, views))
    client.get('/save')

    assert client.get('/home').text.split('|')[1] == 'Saved'
    assert client.get('/home').text.split('|')[1] == ''


def test_payload_wins_over_variables(root, views):
    client = make_client(jet_renderer(root, views))

    body = client.get('/home').text

    assert body == 'no||hi|example.com'


def test_simple_engine_renders_given_data(root, views):
    renderer = Renderer('go', root, create_view_set(views), port='8080')
    app = Flask(__name__)

    with app.test_request_context('/'):
        response = renderer.page('home', data=TemplateData(string_map={'title': 'Welcome'}))

    assert response.mimetype == 'text/html'
    # The simple engine does not fill request defaults
    assert response.get_data(as_text=True) == 'Welcome|'


def test_unknown_renderer(root, views):
    app = Flask(__name__)
    with app.test_request_context('/'):
        with pytest.raises(TemplateRenderError):
            Renderer('mustache', root, create_view_set(views)).page('home')


def test_missing_template(root, views):
    app = Flask(__name__)
    with app.test_request_context('/'):
        with pytest.raises(TemplateNotFoundError):
            Renderer('simple', root, create_view_set(views)).page('nowhere')


def test_broken_template(root, views):
    write(os.path.join(views, 'broken.page.tmpl'), '{% if %}')
    app = Flask(__name__)
    with app.test_request_context('/'):
        with pytest.raises(TemplateRenderError):
            Renderer('simple', root, create_view_set(views)).page('broken')


def test_development_view_set_does_not_cache(root, views):
    env = create_view_set(views, development=True)
    assert env.cache is None

    write(os.path.join(views, 'live.jet'), 'first')
    assert env.get_template('live.jet').render() == 'first'
    write(os.path.join(views, 'live.jet'), 'second')
    assert env.get_template('live.jet').render() == 'second'


def test_production_view_set_caches(views):
    assert create_view_set(views).cache is not None
