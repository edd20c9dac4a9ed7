"""
flickr_ops.py: Module for Flickr-specific operations of the importer

This module handles interactions with the Flickr API: building clients for
wiki users, the OAuth connect flow, resolving import targets, listing photos
page by page and looking up the extra details (tags, albums, license names)
that go into a photo's description page.
"""

import flickrapi
from flickrapi import shorturl
from flickrapi.auth import FlickrAccessToken

from import_utils import Credential, Tag

PER_PAGE = 500  # Maximum allowed by Flickr API

EXTRAS = ','.join([
    'description', 'license', 'date_upload', 'date_taken', 'owner_name',
    'original_format', 'last_update', 'geo', 'tags', 'machine_tags', 'media', 'url_o',
])


class FlickrClientFactory:
    """
    Builds Flickr API clients for wiki users.

    Without an application key and secret there is no client at all, and
    get_client() returns None; callers treat that as the importer being
    switched off.
    """

    def __init__(self, api_key, api_secret, credentials=None):
        self.api_key = api_key
        self.api_secret = api_secret
        self.credentials = credentials

    @property
    def is_configured(self):
        return bool(self.api_key and self.api_secret)

    def get_client(self, user=None):
        if not self.is_configured:
            return None
        credential = None
        if user and self.credentials is not None:
            credential = self.credentials.get(user)
        if credential is None:
            return flickrapi.FlickrAPI(self.api_key, self.api_secret, format='parsed-json', store_token=False)
        token = FlickrAccessToken(credential.access_token, credential.access_token_secret, 'read')
        return flickrapi.FlickrAPI(
            self.api_key, self.api_secret, token=token, format='parsed-json', store_token=False
        )


def get_authorization_url(flickr, callback='oob', perms='read'):
    """Start the OAuth flow and return the URL the user has to visit."""
    flickr.get_request_token(oauth_callback=callback)
    return flickr.auth_url(perms=perms)


def retrieve_access_token(flickr, verifier):
    """Exchange the verifier code for an access token."""
    flickr.get_access_token(verifier)
    token = flickr.token_cache.token
    return Credential(token.token, token.token_secret)


def connected_username(flickr):
    """The Flickr username the client is authenticated as, or None."""
    try:
        response = flickr.test.login()
    except flickrapi.exceptions.FlickrError:
        return None
    username = response['user'].get('username')
    if isinstance(username, dict):
        username = username.get('_content')
    return username or response['user'].get('id')


def resolve_user_id(flickr, user):
    """
    Get the NSID for a Flickr user given either an NSID or a username.

    Returns None if neither lookup finds the user.
    """
    try:
        flickr.people.getInfo(user_id=user)
        return user
    except flickrapi.exceptions.FlickrError:
        pass

    # If not found, try as a username.
    try:
        response = flickr.people.findByUsername(username=user)
    except flickrapi.exceptions.FlickrError:
        return None
    return response['user'].get('nsid') or response['user'].get('id')


def get_photos_page(flickr, job_type, target_id, page=1, per_page=PER_PAGE):
    """
    Fetch one page of photos for an import target.

    Returns the 'photos' (or 'photoset') part of the response: a dict with
    'page', 'pages', 'total' and the 'photo' list.
    """
    params = {'extras': EXTRAS, 'per_page': per_page, 'page': page}
    if job_type == 'user':
        response = flickr.people.getPhotos(user_id=target_id, **params)
        return response['photos']
    elif job_type == 'group':
        response = flickr.groups.pools.getPhotos(group_id=target_id, **params)
        return response['photos']
    elif job_type == 'album':
        response = flickr.photosets.getPhotos(photoset_id=target_id, **params)
        return response['photoset']
    elif job_type == 'gallery':
        response = flickr.galleries.getPhotos(gallery_id=target_id, **params)
        return response['photos']
    raise ValueError(f"Unknown import type '{job_type}'")


def get_photo_tags(flickr, photo_id):
    """The tags of a photo, including whether each is a machine tag."""
    response = flickr.photos.getInfo(photo_id=photo_id)
    tags = response['photo'].get('tags', {}).get('tag', [])
    return [Tag(raw=str(tag['raw']), machine_tag=bool(int(tag.get('machine_tag') or 0))) for tag in tags]


def get_photo_sets(flickr, photo_id):
    """Titles of the albums (sets) that contain a photo."""
    response = flickr.photos.getAllContexts(photo_id=photo_id)
    titles = []
    for photoset in response.get('set', []):
        title = photoset.get('title')
        if isinstance(title, dict):
            title = title.get('_content')
        if title:
            titles.append(str(title))
    return titles


class LicenseCache:
    """
    Names of Flickr licenses, keyed by license ID.

    The list is fetched from flickr.photos.licenses.getInfo the first time a
    name is asked for and kept for the rest of the run.
    """

    def __init__(self, flickr):
        self.flickr = flickr
        self.licenses = None

    def name(self, license_id):
        if self.licenses is None:
            response = self.flickr.photos.licenses.getInfo()
            self.licenses = {
                str(license['id']): license['name'] for license in response['licenses']['license']
            }
        return self.licenses.get(str(license_id), '')


def short_url(photo_id):
    return shorturl.url(int(photo_id))
