import mwclient
import pytest

from importer_db import WikiPageRef
from wiki_ops import (
    MediaWiki,
    UploadError,
    manifest_user,
    sanitize_title,
    unique_filename,
)


class FakePage:
    def __init__(self, name, pageid=None, exists=True, text=''):
        self.name = name
        self.page_title = name.split(':', 1)[1]
        self.pageid = pageid
        self.exists = exists
        self._text = text

    def text(self):
        return self._text


class FakePages(dict):
    def __missing__(self, name):
        return FakePage(name, exists=False)


class FakeSite:
    """Just enough of mwclient.Site for MediaWiki."""

    namespaces = {2: 'User', 6: 'File'}

    def __init__(self, files=(), search_results=(), title_search=True):
        self.files = list(files)
        self.search_results = list(search_results)
        self.title_search = title_search
        self.searches = []
        self.uploads = []
        self.upload_result = {'result': 'Success', 'filename': None}
        self.upload_error = None
        self.pages = FakePages()
        self.prop_pages = []
        self.api_calls = []

    def allpages(self, prefix=None, namespace='0'):
        assert namespace == 6
        return [FakePage(f"File:{name}") for name in self.files if name.startswith(prefix)]

    def search(self, search, namespace='0', what=None):
        self.searches.append((search, namespace, what))
        if what == 'title' and not self.title_search:
            raise mwclient.errors.APIError('search-title-disabled', 'Title search is disabled', {})
        return [{'ns': 2, 'title': title} for title in self.search_results]

    def upload(self, **kwargs):
        self.uploads.append(kwargs)
        if self.upload_error:
            raise self.upload_error
        return self.upload_result

    def api(self, action, **kwargs):
        assert action == 'query' and kwargs['list'] == 'pageswithprop'
        self.api_calls.append(dict(kwargs))
        start = int(kwargs.get('pwpcontinue', 0))
        batch = self.prop_pages[start:start + 2]
        data = {'batchcomplete': '', 'query': {'pageswithprop': batch}}
        if start + 2 < len(self.prop_pages):
            data['continue'] = {'pwpcontinue': str(start + 2), 'continue': '||'}
        return data


def test_new_file_keeps_its_name(wiki):
    assert unique_filename('Test file', wiki) == 'Test file'


def test_existing_files_get_a_number(wiki):
    wiki.files.append('Test file.jpg')
    assert unique_filename('Test file', wiki) == 'Test file (2)'

    wiki.files.append('Test file.pdf')
    assert unique_filename('Test file', wiki) == 'Test file (3)'

    # A file that differs in more than just the extension doesn't get changed.
    assert unique_filename('Test file four', wiki) == 'Test file four'


def test_longer_existing_name_is_not_a_collision(wiki):
    wiki.files.append('Test file four.jpg')
    assert unique_filename('Test file', wiki) == 'Test file'


def test_numbered_copies_count_as_collisions(wiki):
    wiki.files.extend(['Sunset.jpg', 'Sunset (2).jpg'])
    assert unique_filename('Sunset', wiki) == 'Sunset (3)'


def test_illegal_chars_in_photo_title(wiki):
    assert unique_filename('Test%20file with|illegal "chars"', wiki) == 'Test file with illegal "chars"'


def test_sanitize_title():
    assert sanitize_title('a [b] {c} <d> #e') == 'A b c d e'
    assert sanitize_title('under_scored  name ') == 'Under scored name'
    assert sanitize_title('Caf&eacute; &amp; bar') == 'Caf bar'
    assert sanitize_title('Ünïcödé ok') == 'Ünïcödé ok'


def test_sanitize_title_truncates():
    assert len(sanitize_title('x' * 300)) == 230


def test_sanitize_title_rejects_empty():
    with pytest.raises(ValueError):
        sanitize_title('|||')


def test_manifest_user():
    assert manifest_user('User:Alice/FlickrImporter.json') == 'Alice'
    assert manifest_user('Benutzer:Bob Smith/FlickrImporter.json') == 'Bob Smith'
    assert manifest_user('User:Alice/Other.json') is None
    assert manifest_user('User:Alice/Sub/FlickrImporter.json') is None
    assert manifest_user('FlickrImporter.json') is None


def test_count_files_through_the_api():
    site = FakeSite(files=['Test file.jpg', 'Test file.pdf', 'Test file four.jpg', 'Test filed.png'])
    assert MediaWiki(site).count_files('Test file') == 2


def test_find_manifests_keeps_only_manifest_pages():
    site = FakeSite(search_results=[
        'User:Alice/FlickrImporter.json',
        'User:Alice/FlickrImporter.json.bak',
        'User:Bob/FlickrImporter.json',
    ])
    assert list(MediaWiki(site).find_manifests()) == [
        ('Alice', 'User:Alice/FlickrImporter.json'),
        ('Bob', 'User:Bob/FlickrImporter.json'),
    ]
    assert site.searches == [('FlickrImporter.json', 2, 'title')]


def test_find_manifests_without_title_search():
    site = FakeSite(search_results=['User:Alice/FlickrImporter.json'], title_search=False)
    assert list(MediaWiki(site).find_manifests()) == [('Alice', 'User:Alice/FlickrImporter.json')]
    assert site.searches[-1] == ('intitle:"FlickrImporter.json"', 2, None)


def test_manifest_text():
    site = FakeSite()
    site.pages['User:Alice/FlickrImporter.json'] = FakePage('User:Alice/FlickrImporter.json', text='[]')
    wiki = MediaWiki(site)
    assert wiki.manifest_title('Alice') == 'User:Alice/FlickrImporter.json'
    assert wiki.manifest_text('User:Alice/FlickrImporter.json') == '[]'
    assert wiki.manifest_text('User:Bob/FlickrImporter.json') is None


def test_upload_success_returns_the_file_page():
    site = FakeSite()
    site.upload_result = {'result': 'Success', 'filename': 'Sunset.jpg'}
    site.pages['File:Sunset.jpg'] = FakePage('File:Sunset.jpg', pageid=42)

    page = MediaWiki(site).upload('https://example.org/s.jpg', 'Sunset.jpg', '{{FlickrImporter}}', 'Imported')

    assert page == WikiPageRef(42, 'File:Sunset.jpg')
    assert site.uploads == [{
        'url': 'https://example.org/s.jpg',
        'filename': 'Sunset.jpg',
        'description': '{{FlickrImporter}}',
        'comment': 'Imported',
        'ignore': False,
    }]


def test_upload_warnings_are_failures():
    site = FakeSite()
    site.upload_result = {'result': 'Warning', 'warnings': {'duplicate': ['Other.jpg']}}
    with pytest.raises(UploadError, match='duplicate'):
        MediaWiki(site).upload('https://example.org/s.jpg', 'Sunset.jpg', '', '')


def test_upload_api_errors_are_failures():
    site = FakeSite()
    site.upload_error = mwclient.errors.APIError('copyuploaddisabled', 'Upload by URL disabled.', {})
    with pytest.raises(UploadError, match='copyuploaddisabled'):
        MediaWiki(site).upload('https://example.org/s.jpg', 'Sunset.jpg', '', '')


def test_gap_in_numbered_copies_is_skipped(wiki):
    wiki.files.extend(['Sunset.jpg', 'Sunset (3).jpg'])
    assert unique_filename('Sunset', wiki) == 'Sunset (4)'


def test_sanitize_title_truncates_by_bytes():
    title = sanitize_title('日' * 300)
    assert len(title.encode('utf-8')) <= 230
    assert title == '日' * 76


def test_long_multibyte_title_fits_the_wiki(wiki):
    wiki.files.append('日' * 76 + '.jpg')
    name = unique_filename('日' * 300, wiki) + '.jpeg'
    assert len(name.encode('utf-8')) <= 255


def test_pages_with_prop_follows_continuation():
    site = FakeSite()
    site.prop_pages = [
        {'pageid': 7, 'ns': 6, 'title': 'File:Sunset.jpg', 'value': '123'},
        {'pageid': 8, 'ns': 6, 'title': 'File:Beach.jpg', 'value': '124'},
        {'pageid': 9, 'ns': 6, 'title': 'File:Hill.jpg', 'value': '125'},
    ]

    pages = list(MediaWiki(site).pages_with_prop('flickrimporter_flickrid'))

    assert pages == [
        ('123', WikiPageRef(7, 'File:Sunset.jpg')),
        ('124', WikiPageRef(8, 'File:Beach.jpg')),
        ('125', WikiPageRef(9, 'File:Hill.jpg')),
    ]
    assert len(site.api_calls) == 2
    assert site.api_calls[0]['pwppropname'] == 'flickrimporter_flickrid'
    assert site.api_calls[1]['pwpcontinue'] == '2'
