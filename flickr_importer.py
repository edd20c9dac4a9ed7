"""
flickr_importer.py: Import photos from Flickr into a wiki

Each wiki user can keep an import manifest at User:<name>/FlickrImporter.json,
a JSON list of things to import:

    [
        {"type": "album", "id": "72157600000000000", "description": "Holidays"},
        {"type": "user", "id": "someone", "privacy": ["public", "friends"]}
    ]

The `import` command walks every manifest on the wiki, lists the photos of
each import target page by page and uploads the ones that haven't been
imported yet, each with a description page built from its Flickr metadata.
The `connect`, `disconnect` and `status` commands manage the Flickr account
a wiki user's imports are made with.

Usage:
    python flickr_importer.py import [--user NAME] [--report FILE] [--debug]
    python flickr_importer.py connect --user NAME [--callback URL] [--verifier CODE]
    python flickr_importer.py disconnect --user NAME
    python flickr_importer.py status --user NAME

Requires a secrets.json file (or --config / $FLICKRIMPORTER_CONFIG) with at
least flickr_api_key, flickr_api_secret and wiki_host.
"""

import argparse
import json
import sys

import flickrapi

from flickr_ops import (
    FlickrClientFactory,
    LicenseCache,
    connected_username,
    get_authorization_url,
    get_photo_sets,
    get_photo_tags,
    get_photos_page,
    resolve_user_id,
    retrieve_access_token,
    short_url,
)
from import_utils import (
    DEFAULT_TEMPLATE_NAME,
    ConfigError,
    ManifestError,
    Photo,
    RunReport,
    load_secrets,
    parse_manifest,
    render_wikitext,
    write_report,
)
from importer_db import CredentialStore, ImportLinkage, connect_to_state_db
from wiki_ops import UploadError, connect_to_wiki, unique_filename


def print_flush(message):
    """Print a message and flush the output."""
    print(message, flush=True)


class ImportWalker:
    """
    Runs the imports listed in users' manifests.

    Args:
    clients (FlickrClientFactory): Builds a Flickr client for each manifest's user
    wiki: The wiki to import into (manifest lookup, filename index, uploads)
    linkage (ImportLinkage): Record of photos already imported
    licenses (LicenseCache): License names for this run
    template_name (str): Template used on the generated description pages
    debug (bool): Whether to print a line for every skipped photo
    """

    def __init__(self, clients, wiki, linkage, licenses, template_name=DEFAULT_TEMPLATE_NAME, debug=False):
        self.clients = clients
        self.wiki = wiki
        self.linkage = linkage
        self.licenses = licenses
        self.template_name = template_name
        self.debug = debug
        self.report = RunReport()

    def error(self, message):
        print(message, file=sys.stderr, flush=True)
        self.report.errors.append(message.strip())

    def run(self, manifests=None):
        """Process the given (username, title) manifests, or all of them found on the wiki."""
        try:
            linked = self.linkage.sync_from_wiki(self.wiki)
            print_flush(f"{linked} imported photos linked on the wiki")
        except Exception as e:
            self.error(f"Unable to read imported photos from the wiki: {str(e)}")

        if manifests is None:
            manifests = list(self.wiki.find_manifests())
            print_flush(f"{len(manifests)} pages found")
        total = len(manifests)
        for num, (username, title) in enumerate(manifests, start=1):
            print_flush(f"{num}/{total} - {title}")
            try:
                text = self.wiki.manifest_text(title)
                if text is None:
                    self.error(f"    {title} does not exist")
                    continue
                self.process_manifest(username, text)
            except Exception as e:
                self.error(f"    Failed to process {title}: {str(e)}")
        return self.report

    def process_manifest(self, username, text):
        print_flush(f"    For User:{username}")
        self.report.manifests += 1
        try:
            entries = parse_manifest(text)
        except ManifestError as e:
            self.error(f"    {e}")
            return

        for entry, job, problem in entries:
            if job is None:
                self.error(f"{problem}:\n{json.dumps(entry, indent=4)}")
                continue
            try:
                self.process_job(username, job)
            except Exception as e:
                self.error(f"      Import of {job.type} '{job.id}' failed: {str(e)}")

    def process_job(self, username, job):
        self.report.jobs += 1
        if job.description:
            print_flush(f"    - Import: {job.description}")

        flickr = self.clients.get_client(username)
        if flickr is None:
            self.error("      Flickr API key and secret are not configured")
            return

        target_id = job.id
        if job.type == 'user':
            target_id = resolve_user_id(flickr, job.id)
            if target_id is None:
                self.error(f"      Unable to determine ID for user '{job.id}'")
                return

        print_flush(f"      (privacy levels: {', '.join(job.privacy_labels())})")

        page = 1
        while True:
            try:
                photos = get_photos_page(flickr, job.type, target_id, page)
            except flickrapi.exceptions.FlickrError as e:
                if page == 1:
                    self.error(f"      Unable to find any photos for {job.type} '{job.id}': {str(e)}")
                else:
                    self.error(f"      Unable to fetch page {page} for {job.type} '{job.id}': {str(e)}")
                return

            current = int(photos.get('page') or page)
            pages = int(photos.get('pages') or 0)
            print_flush(f"Page {current} of {pages} ({photos.get('total', 0)} photos)")

            for entry in photos.get('photo', []):
                self.process_photo(flickr, job, entry)

            if current >= pages:
                break
            page = current + 1

    def skip(self, photo, reason):
        self.report.skipped += 1
        if self.debug:
            print_flush(f"      - {photo.id} skipped ({reason})")

    def process_photo(self, flickr, job, entry):
        try:
            photo = Photo.from_api(entry)
        except ValueError as e:
            self.report.failed += 1
            self.error(f"      - {str(e)}")
            return

        if photo.privacy_level not in job.privacy:
            self.skip(photo, f"privacy level {photo.privacy_level}")
            return
        if photo.is_video:
            self.skip(photo, "video")
            return

        existing = self.linkage.find_by_flickr_id(photo.id)
        if existing is not None:
            self.report.already_imported += 1
            print_flush(f"      - {photo.id} already imported as {existing.title} {short_url(photo.id)}")
            return

        try:
            self.import_photo(flickr, photo)
        except Exception as e:
            self.report.failed += 1
            self.error(f"        Failed to import photo {photo.id}: {str(e)}")

    def filename_base(self, photo):
        try:
            return unique_filename(photo.title, self.wiki)
        except ValueError:
            # Untitled photos are named after their Flickr ID.
            return unique_filename(photo.id, self.wiki)

    def import_photo(self, flickr, photo):
        photo_url = short_url(photo.id)
        print_flush(f"      - {photo.id} importing {photo.title} {photo_url}")
        if not photo.url_original:
            raise UploadError("No original file is available")

        # The photo list doesn't give machine-tag flags or albums.
        photo.tags = get_photo_tags(flickr, photo.id)
        photo.sets = get_photo_sets(flickr, photo.id)

        wikitext = render_wikitext(photo, self.template_name, self.licenses.name(photo.license_id))
        filename = f"{self.filename_base(photo)}.{photo.extension}"
        page = self.wiki.upload(photo.url_original, filename, wikitext, f"Imported from {photo_url}")
        self.linkage.record(photo.id, page)

        self.report.imported.append({'flickr_id': photo.id, 'title': page.title, 'url': photo_url})
        print_flush(f"        imported as: {page.title}")


def import_command(args, config, store, linkage):
    clients = FlickrClientFactory(config['flickr_api_key'], config['flickr_api_secret'], store)
    if not clients.is_configured:
        print("Flickr API key and secret are not configured.", file=sys.stderr)
        return 1
    if not config.get('wiki_host'):
        print("No wiki_host configured.", file=sys.stderr)
        return 1
    try:
        wiki = connect_to_wiki(config)
    except Exception as e:
        print(f"Unable to connect to {config['wiki_host']}: {str(e)}", file=sys.stderr)
        return 1

    walker = ImportWalker(
        clients, wiki, linkage, LicenseCache(clients.get_client()),
        config.get('template_name') or DEFAULT_TEMPLATE_NAME, args.debug,
    )
    manifests = None
    if args.user:
        manifests = [(args.user, wiki.manifest_title(args.user))]
    report = walker.run(manifests)

    summary = report.summary()
    print_flush(f"\nImported {summary['imported']} photos "
                f"({summary['already_imported']} already imported, "
                f"{summary['skipped']} skipped, {summary['failed']} failed)")
    if args.report:
        write_report(report, args.report)
        print_flush(f"Report saved to {args.report}")
    return 0


def connect_command(args, config, store):
    clients = FlickrClientFactory(config['flickr_api_key'], config['flickr_api_secret'], store)
    flickr = clients.get_client()
    if flickr is None:
        print("Flickr API key and secret are not configured.", file=sys.stderr)
        return 1
    try:
        authorize_url = get_authorization_url(flickr, callback=args.callback)
        print_flush(f"Please authorize this app: {authorize_url}")
        verifier = args.verifier or input('Verifier code: ')
        credential = retrieve_access_token(flickr, verifier.strip())
    except flickrapi.exceptions.FlickrError as e:
        print(f"Unable to connect to Flickr: {str(e)}", file=sys.stderr)
        return 1
    store.save(args.user, credential)
    print_flush(f"Connected User:{args.user} to Flickr.")
    return status_command(args, config, store)


def disconnect_command(args, config, store):
    if store.clear(args.user):
        print_flush(f"Disconnected User:{args.user} from Flickr.")
    else:
        print_flush(f"User:{args.user} was not connected to Flickr.")
    return 0


def status_command(args, config, store):
    clients = FlickrClientFactory(config['flickr_api_key'], config['flickr_api_secret'], store)
    if not clients.is_configured:
        print("Flickr API key and secret are not configured.", file=sys.stderr)
        return 1
    if store.get(args.user) is None:
        print_flush(f"User:{args.user} is not connected to Flickr.")
        return 0
    username = connected_username(clients.get_client(args.user))
    if username:
        print_flush(f"User:{args.user} is connected to Flickr as {username}.")
    else:
        print_flush(f"User:{args.user} is not connected to Flickr (the stored token was not accepted).")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description='Import photos from Flickr into a wiki')
    parser.add_argument('--config', help='Path to secrets.json')
    parser.add_argument('--debug', action='store_true', help='Enable debug output')
    subparsers = parser.add_subparsers(dest='command', required=True)

    import_parser = subparsers.add_parser('import', help="Run all users' import manifests")
    import_parser.add_argument('--user', help="Only run this wiki user's manifest")
    import_parser.add_argument('--report', help='Write a YAML report of the run to this file')

    connect_parser = subparsers.add_parser('connect', help='Connect a wiki user to a Flickr account')
    connect_parser.add_argument('--user', required=True, help='Wiki username')
    connect_parser.add_argument('--callback', default='oob', help='OAuth callback URL (default: oob)')
    connect_parser.add_argument('--verifier', help='Verifier code (prompted for if not given)')

    disconnect_parser = subparsers.add_parser('disconnect', help="Forget a wiki user's Flickr account")
    disconnect_parser.add_argument('--user', required=True, help='Wiki username')

    status_parser = subparsers.add_parser('status', help="Show a wiki user's Flickr connection")
    status_parser.add_argument('--user', required=True, help='Wiki username')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.debug:
        print_flush("Debug mode enabled")

    try:
        config = load_secrets(args.config)
    except ConfigError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1

    conn = connect_to_state_db(config['database'])
    try:
        store = CredentialStore(conn)
        if args.command == 'import':
            return import_command(args, config, store, ImportLinkage(conn))
        elif args.command == 'connect':
            return connect_command(args, config, store)
        elif args.command == 'disconnect':
            return disconnect_command(args, config, store)
        return status_command(args, config, store)
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
