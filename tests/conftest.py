import mwclient
import pytest
from flickrapi.exceptions import FlickrError

from importer_db import CredentialStore, ImportLinkage, WikiPageRef, connect_to_state_db
from wiki_ops import UploadError, manifest_user, same_base_pattern


class FakeFlickrMethod:
    def __init__(self, flickr, name):
        self.flickr = flickr
        self.name = name

    def __getattr__(self, part):
        if part.startswith('_'):
            raise AttributeError(part)
        return FakeFlickrMethod(self.flickr, f"{self.name}.{part}")

    def __call__(self, **kwargs):
        self.flickr.calls.append((self.name, kwargs))
        handler = self.flickr.responses.get(self.name)
        if handler is None:
            raise FlickrError(f"Method '{self.name}' not found")
        if callable(handler):
            return handler(**kwargs)
        return handler


class FakeFlickr:
    """Stands in for flickrapi.FlickrAPI(format='parsed-json')."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        return FakeFlickrMethod(self, name)

    def called(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]


class FakeClients:
    def __init__(self, flickr, configured=True):
        self.flickr = flickr
        self.configured = configured
        self.users = []

    @property
    def is_configured(self):
        return self.configured

    def get_client(self, user=None):
        self.users.append(user)
        return self.flickr if self.configured else None


class FakeWiki:
    """The wiki side: file names, manifest pages and uploads."""

    def __init__(self):
        self.files = []
        self.manifests = {}
        self.uploads = []
        self.rejected_urls = set()
        self.linked_pages = {}
        self.unreadable = set()

    def count_files(self, base_name):
        pattern = same_base_pattern(base_name)
        return sum(1 for name in self.files if pattern.match(name))

    def find_manifests(self):
        for title in self.manifests:
            yield manifest_user(title), title

    def manifest_title(self, username):
        return f"User:{username}/FlickrImporter.json"

    def manifest_text(self, title):
        if title in self.unreadable:
            raise mwclient.errors.APIError('readapidenied', 'You need read permission to use this module.', {})
        return self.manifests.get(title)

    def pages_with_prop(self, propname):
        for flickr_id, page in self.linked_pages.items():
            yield flickr_id, page

    def upload(self, url, filename, description, comment):
        if url in self.rejected_urls:
            raise UploadError("Not uploaded. Warnings: duplicate")
        self.files.append(filename)
        self.uploads.append({'url': url, 'filename': filename, 'description': description, 'comment': comment})
        return WikiPageRef(len(self.files), f"File:{filename}")


def make_photo(photo_id, **overrides):
    """One entry of a Flickr photo list page, with the importer's extras."""
    entry = {
        'id': str(photo_id),
        'owner': '12345678@N00',
        'title': f'Photo {photo_id}',
        'description': {'_content': 'A photo'},
        'ownername': 'Alice',
        'datetaken': '2020-05-01 10:00:00',
        'datetakengranularity': 0,
        'dateupload': '1588327200',
        'latitude': 0,
        'longitude': 0,
        'license': '4',
        'originalformat': 'jpg',
        'media': 'photo',
        'url_o': f'https://live.staticflickr.com/65535/{photo_id}_abc_o.jpg',
        'ispublic': 1,
        'isfriend': 0,
        'isfamily': 0,
    }
    entry.update(overrides)
    return entry


def photo_page(photos, page=1, pages=1, key='photos'):
    return {key: {'page': page, 'pages': pages, 'perpage': 500, 'total': len(photos), 'photo': photos}, 'stat': 'ok'}


def photo_info(photo_id, tags=()):
    return {
        'photo': {
            'id': str(photo_id),
            'tags': {'tag': [{'raw': raw, 'machine_tag': int(machine)} for raw, machine in tags]},
        },
        'stat': 'ok',
    }


LICENSES = {
    'licenses': {
        'license': [
            {'id': 0, 'name': 'All Rights Reserved', 'url': ''},
            {'id': 4, 'name': 'Attribution License', 'url': 'https://creativecommons.org/licenses/by/2.0/'},
        ]
    },
    'stat': 'ok',
}


@pytest.fixture
def conn():
    conn = connect_to_state_db(':memory:')
    yield conn
    conn.close()


@pytest.fixture
def store(conn):
    return CredentialStore(conn)


@pytest.fixture
def linkage(conn):
    return ImportLinkage(conn)


@pytest.fixture
def wiki():
    return FakeWiki()
