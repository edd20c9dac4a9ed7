"""
wiki_ops.py: Module for wiki-specific operations of the importer

This module handles interactions with the MediaWiki site photos are imported
into: cleaning photo titles into usable filenames, finding users' import
manifests, and uploading files by URL.
"""

import re

import mwclient

from import_utils import MANIFEST_PAGE_NAME
from importer_db import WikiPageRef

NS_USER = 2
NS_FILE = 6

MAX_TITLE_LENGTH = 230

# Characters MediaWiki allows in page titles; anything else is invalid, as
# are percent-encoded sequences and HTML character references.
LEGAL_TITLE_CHARS = " %!\"$&'()*,\\-./0-9:;=?@A-Z\\\\^_`a-z~+\u0080-\U0010ffff"
INVALID_TITLE = re.compile(
    '[^' + LEGAL_TITLE_CHARS + ']'
    '|%[0-9A-Fa-f]{2}'
    '|&[A-Za-z0-9\u0080-\U0010ffff]+;'
)


class UploadError(Exception):
    pass


def normalize_title(text):
    """Normalize title text the way the wiki does: single spaces, capital first letter."""
    text = re.sub(r'[ _]+', ' ', text).strip()
    if not text:
        return text
    return text[0].upper() + text[1:]


def sanitize_title(candidate, max_len=MAX_TITLE_LENGTH):
    """
    Make a usable page title out of arbitrary text.

    The text is cut to max_len bytes of UTF-8 (never inside a character) and
    every invalid character or sequence is replaced with a space.
    """
    short_title = candidate.encode('utf-8')[:max_len].decode('utf-8', 'ignore')
    clean_title = INVALID_TITLE.sub(' ', short_title)
    title = normalize_title(clean_title)
    if not title:
        raise ValueError(f"No usable title in '{candidate}'")
    return title


def same_base_pattern(base_name):
    """Match file names with this base name: any extension, and earlier numbered copies."""
    return re.compile(r'^' + re.escape(base_name) + r'( \(\d+\))?(\.[^.]+)?$')


def unique_filename(candidate, index):
    """
    Get a filename that is unique, without taking the file extension into account.

    Args:
    candidate (str): The input filename, without an extension or namespace prefix
    index: Anything with a count_files(base_name) method

    Returns:
    str: The sanitized name, with " (N)" appended if files with that name exist
    """
    title = sanitize_title(candidate)
    similar = index.count_files(title)
    if similar == 0:
        return title
    number = similar + 1
    # Numbered copies can have gaps, e.g. "X.jpg" and "X (3).jpg".
    while index.count_files(f"{title} ({number})") > 0:
        number += 1
    return normalize_title(f"{title} ({number})")


def manifest_user(title):
    """The username a manifest page belongs to, or None if the title isn't a manifest."""
    if ':' not in title:
        return None
    rest = title.split(':', 1)[1]
    root, _, subpage = rest.partition('/')
    if not root or subpage != MANIFEST_PAGE_NAME:
        return None
    return root


class MediaWiki:
    """The wiki photos are imported into, reached through its action API."""

    def __init__(self, site):
        self.site = site

    def count_files(self, base_name):
        pattern = same_base_pattern(base_name)
        count = 0
        for page in self.site.allpages(prefix=base_name, namespace=NS_FILE):
            if pattern.match(page.page_title):
                count += 1
        return count

    def find_manifests(self):
        """Yield (username, title) for every user's import manifest page."""
        try:
            results = list(self.site.search(MANIFEST_PAGE_NAME, namespace=NS_USER, what='title'))
        except mwclient.errors.APIError:
            # Search backends without title search (e.g. CirrusSearch).
            results = list(self.site.search(f'intitle:"{MANIFEST_PAGE_NAME}"', namespace=NS_USER))

        seen = set()
        for result in results:
            title = result['title']
            username = manifest_user(title)
            if username and title not in seen:
                seen.add(title)
                yield username, title

    def pages_with_prop(self, propname):
        """Yield (value, WikiPageRef) for every page that has the given page property."""
        params = {
            'list': 'pageswithprop',
            'pwppropname': propname,
            'pwpprop': 'ids|title|value',
            'pwplimit': 'max',
        }
        while True:
            data = self.site.api('query', **params)
            for page in data.get('query', {}).get('pageswithprop', []):
                yield page['value'], WikiPageRef(page['pageid'], page['title'])
            cont = data.get('continue')
            if not cont:
                break
            params.update(cont)

    def manifest_title(self, username):
        user_ns = self.site.namespaces.get(NS_USER, 'User')
        return f"{user_ns}:{username}/{MANIFEST_PAGE_NAME}"

    def manifest_text(self, title):
        page = self.site.pages[title]
        if not page.exists:
            return None
        return page.text()

    def upload(self, url, filename, description, comment):
        """
        Upload a file from a URL, with warnings treated as failures.

        Returns a WikiPageRef for the new file page.
        """
        try:
            result = self.site.upload(
                url=url, filename=filename, description=description, comment=comment, ignore=False
            )
        except mwclient.errors.FileExists as e:
            raise UploadError(f"Not uploaded. Warnings: exists ({e})")
        except mwclient.errors.APIError as e:
            raise UploadError(f"{e.code}: {e.info}")
        except mwclient.errors.MwClientError as e:
            raise UploadError(str(e))

        if result.get('result') == 'Warning':
            raise UploadError("Not uploaded. Warnings: " + ','.join(result.get('warnings', {}).keys()))
        if result.get('result') != 'Success':
            raise UploadError(f"Upload failed: {result}")

        page = self.site.pages[f"File:{result.get('filename', filename)}"]
        return WikiPageRef(getattr(page, 'pageid', None), page.name)


def connect_to_wiki(config):
    """Connect to the wiki named in the configuration and log in if credentials are given."""
    site = mwclient.Site(
        config['wiki_host'],
        path=config.get('wiki_path') or '/w/',
        scheme=config.get('wiki_scheme') or 'https',
        clients_useragent=config.get('user_agent'),
    )
    if config.get('wiki_username') and config.get('wiki_password'):
        site.login(config['wiki_username'], config['wiki_password'])
    return MediaWiki(site)
