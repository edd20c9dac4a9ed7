"""
import_utils.py: Shared helpers for the Flickr importer

This module loads the importer configuration, defines the records that flow
through an import run (credentials, manifest jobs, photos), parses manifests,
renders the wikitext description page for a photo and writes run reports.
"""

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

import yaml

MANIFEST_PAGE_NAME = 'FlickrImporter.json'
DEFAULT_TEMPLATE_NAME = 'FlickrImporter'

JOB_TYPES = ('user', 'group', 'album', 'gallery')

PRIVACY_PUBLIC = 1
PRIVACY_FRIENDS = 2
PRIVACY_FAMILY = 3
PRIVACY_FRIENDS_FAMILY = 4
PRIVACY_PRIVATE = 5

PRIVACY_LABELS = {
    PRIVACY_PUBLIC: 'public',
    PRIVACY_FRIENDS: 'friends',
    PRIVACY_FAMILY: 'family',
    PRIVACY_FRIENDS_FAMILY: 'friends and family',
    PRIVACY_PRIVATE: 'private',
}

PRIVACY_NAMES = {label: level for level, label in PRIVACY_LABELS.items()}
PRIVACY_NAMES.update({
    'friend': PRIVACY_FRIENDS,
    'friends_family': PRIVACY_FRIENDS_FAMILY,
    'friends_and_family': PRIVACY_FRIENDS_FAMILY,
    'friends-family': PRIVACY_FRIENDS_FAMILY,
})

CHECKSUM_TAG = re.compile(r'checksum:(md5|sha1)=.*', re.IGNORECASE)

DEFAULT_CONFIG = {
    'flickr_api_key': None,
    'flickr_api_secret': None,
    'wiki_host': None,
    'wiki_path': '/w/',
    'wiki_scheme': 'https',
    'wiki_username': None,
    'wiki_password': None,
    'template_name': DEFAULT_TEMPLATE_NAME,
    'database': 'flickrimporter.sqlite',
    'user_agent': 'FlickrImporter/1.0',
}


class ConfigError(Exception):
    pass


class ManifestError(ValueError):
    pass


def default_config_path():
    env_path = os.environ.get('FLICKRIMPORTER_CONFIG')
    if env_path:
        return env_path
    script_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(script_dir, 'secrets.json')


def load_secrets(path=None):
    """
    Load the importer configuration from a secrets.json file.

    A missing file is not an error: it yields the defaults, which leave the
    Flickr key and secret unset so that importing is disabled.
    """
    path = path or default_config_path()
    config = dict(DEFAULT_CONFIG)
    try:
        with open(path, 'r') as f:
            secrets = json.load(f)
    except FileNotFoundError:
        return config
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}")

    if not isinstance(secrets, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    # Older secrets files used the short key names.
    if 'api_key' in secrets and 'flickr_api_key' not in secrets:
        secrets['flickr_api_key'] = secrets.pop('api_key')
    if 'api_secret' in secrets and 'flickr_api_secret' not in secrets:
        secrets['flickr_api_secret'] = secrets.pop('api_secret')

    config.update({k: v for k, v in secrets.items() if v is not None})
    return config


def privacy_level(is_public, is_friend, is_family):
    """Flickr's privacy level for the three visibility flags."""
    if is_public:
        return PRIVACY_PUBLIC
    if is_friend and is_family:
        return PRIVACY_FRIENDS_FAMILY
    if is_friend:
        return PRIVACY_FRIENDS
    if is_family:
        return PRIVACY_FAMILY
    return PRIVACY_PRIVATE


def privacy_label(level):
    return PRIVACY_LABELS.get(level, '')


def normalize_privacy(value):
    """Turn a manifest 'privacy' value (scalar or list) into a set of levels."""
    if value is None:
        return {PRIVACY_PUBLIC}
    if not isinstance(value, (list, tuple, set)):
        value = [value]

    levels = set()
    for item in value:
        if isinstance(item, bool):
            raise ManifestError(f"Unknown privacy level '{item}'")
        if isinstance(item, int) and item in PRIVACY_LABELS:
            levels.add(item)
        elif isinstance(item, str) and item.strip().isdigit() and int(item) in PRIVACY_LABELS:
            levels.add(int(item))
        elif isinstance(item, str) and item.strip().lower() in PRIVACY_NAMES:
            levels.add(PRIVACY_NAMES[item.strip().lower()])
        else:
            raise ManifestError(f"Unknown privacy level '{item}'")
    if not levels:
        raise ManifestError("Empty privacy list")
    return levels


@dataclass
class Credential:
    access_token: str
    access_token_secret: str

    def to_json(self):
        return json.dumps({'token': self.access_token, 'secret': self.access_token_secret})

    @classmethod
    def from_json(cls, blob):
        """Parse a stored blob; anything unusable reads as no credential."""
        if not blob:
            return None
        try:
            data = json.loads(blob)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or not data.get('token') or not data.get('secret'):
            return None
        return cls(data['token'], data['secret'])


@dataclass
class Job:
    type: str
    id: str
    description: str = None
    privacy: set = field(default_factory=lambda: {PRIVACY_PUBLIC})

    @classmethod
    def from_manifest(cls, entry):
        if not isinstance(entry, dict):
            raise ManifestError("Import is not a JSON object")
        if entry.get('type') is None or entry.get('id') in (None, ''):
            raise ManifestError("Import has no 'type' or 'id' defined")
        job_type = entry['type']
        if job_type not in JOB_TYPES:
            raise ManifestError(f"Unknown import type '{job_type}'")
        description = entry.get('description')
        return cls(
            type=job_type,
            id=str(entry['id']).strip(),
            description=str(description) if description is not None else None,
            privacy=normalize_privacy(entry.get('privacy')),
        )

    def privacy_labels(self):
        return [privacy_label(level) for level in sorted(self.privacy)]


def parse_manifest(text):
    """
    Parse the JSON text of a manifest page.

    Returns a list of (entry, job, error) tuples, one per entry, so that an
    invalid entry can be reported without losing the ones after it. Raises
    ManifestError when the page as a whole is unusable.
    """
    try:
        entries = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Manifest is not valid JSON: {e}")
    if not isinstance(entries, list):
        raise ManifestError("Manifest must be a JSON array of imports")

    parsed = []
    for entry in entries:
        try:
            parsed.append((entry, Job.from_manifest(entry), None))
        except ManifestError as e:
            parsed.append((entry, None, str(e)))
    return parsed


@dataclass
class Tag:
    raw: str
    machine_tag: bool = False

    def is_category(self):
        if self.machine_tag:
            return False
        return CHECKSUM_TAG.search(self.raw) is None


def _text(value):
    # Flickr wraps some strings as {"_content": "..."}.
    if isinstance(value, dict):
        value = value.get('_content', '')
    return '' if value is None else str(value)


def _coordinate(value):
    if value in (None, '', 0, '0', 0.0):
        return None
    try:
        if float(value) == 0:
            return None
    except (TypeError, ValueError):
        return None
    return str(value)


def _flag(value):
    try:
        return bool(int(value))
    except (TypeError, ValueError):
        return bool(value)


@dataclass
class Photo:
    id: str
    title: str = ''
    description: str = ''
    owner_name: str = ''
    date_taken: str = ''
    date_taken_granularity: str = '0'
    date_upload: int = 0
    latitude: str = None
    longitude: str = None
    license_id: str = ''
    original_format: str = ''
    media: str = 'photo'
    url_original: str = None
    is_public: bool = False
    is_friend: bool = False
    is_family: bool = False
    tags: list = field(default_factory=list)
    sets: list = field(default_factory=list)

    @classmethod
    def from_api(cls, data):
        """Build a Photo from one entry of a Flickr photo list page."""
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError(f"Photo entry without an id: {data!r}")
        try:
            date_upload = int(data.get('dateupload') or 0)
        except (TypeError, ValueError):
            date_upload = 0
        return cls(
            id=str(data['id']),
            title=_text(data.get('title')),
            description=_text(data.get('description')),
            owner_name=_text(data.get('ownername')),
            date_taken=_text(data.get('datetaken')),
            date_taken_granularity=_text(data.get('datetakengranularity', 0)),
            date_upload=date_upload,
            latitude=_coordinate(data.get('latitude')),
            longitude=_coordinate(data.get('longitude')),
            license_id=_text(data.get('license')),
            original_format=_text(data.get('originalformat')),
            media=_text(data.get('media')) or 'photo',
            url_original=data.get('url_o') or None,
            is_public=_flag(data.get('ispublic', 0)),
            is_friend=_flag(data.get('isfriend', 0)),
            is_family=_flag(data.get('isfamily', 0)),
        )

    @property
    def privacy_level(self):
        return privacy_level(self.is_public, self.is_friend, self.is_family)

    @property
    def is_video(self):
        return self.media == 'video'

    @property
    def extension(self):
        if self.original_format:
            return self.original_format.lower()
        if self.url_original:
            path = self.url_original.split('?', 1)[0]
            if '.' in path.rsplit('/', 1)[-1]:
                return path.rsplit('.', 1)[-1].lower()
        return 'jpg'

    def date_published(self):
        return datetime.fromtimestamp(self.date_upload, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


def category_title(name):
    """Normalize a tag or album name as a category page title, or None if it can't be one."""
    text = re.sub(r'[_ ]+', ' ', name).strip()
    if not text or re.search(r'[#<>\[\]|{}\x00-\x1f\x7f]', text):
        return None
    return text[0].upper() + text[1:]


def render_wikitext(photo, template_name, license_name):
    """
    Render the description page for an imported photo.

    The template call carries the photo metadata; it is followed by one
    category link per ordinary tag and one per album the photo is in.
    """
    params = [
        ('title', photo.title),
        ('description', photo.description),
        ('author', photo.owner_name),
        ('date_taken', photo.date_taken),
        ('date_taken_granularity', photo.date_taken_granularity),
        ('date_published', photo.date_published()),
        ('latitude', photo.latitude or ''),
        ('longitude', photo.longitude or ''),
        ('license', license_name),
        ('privacy', privacy_label(photo.privacy_level)),
        ('flickr_id', photo.id),
    ]
    wikitext = '{{' + template_name + '\n'
    for name, value in params:
        wikitext += f' | {name} = {value}\n'
    wikitext += '}}\n'

    categories = [tag.raw for tag in photo.tags if tag.is_category()]
    categories.extend(photo.sets)
    for name in categories:
        title = category_title(name)
        if title:
            wikitext += f'[[Category:{title}]]\n'
    return wikitext


@dataclass
class RunReport:
    manifests: int = 0
    jobs: int = 0
    imported: list = field(default_factory=list)
    already_imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)

    def summary(self):
        return {
            'manifests': self.manifests,
            'jobs': self.jobs,
            'imported': len(self.imported),
            'already_imported': self.already_imported,
            'skipped': self.skipped,
            'failed': self.failed,
        }


def write_report(report, path):
    """Write a run report as YAML."""
    results = {
        'generated': datetime.now().isoformat(timespec='seconds'),
        'summary': report.summary(),
        'imported': report.imported,
        'errors': report.errors,
    }
    with open(path, 'w') as f:
        yaml.dump(results, f, default_flow_style=False, sort_keys=False)
