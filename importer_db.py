"""
importer_db.py: Local state for the Flickr importer

The importer keeps two things between runs in a small SQLite database:
each wiki user's Flickr access token (stored the way the wiki stores user
options) and the link from every imported Flickr photo to the wiki page it
was uploaded as (stored the way the wiki stores page properties). The links
are also read back from the wiki's own page properties at the start of every
import run, so the local copy works as a cache of them.
"""

import sqlite3
from dataclasses import dataclass

from import_utils import Credential

TOKEN_OPTION = 'flickrimporter-accesstoken'
PAGE_PROP_FLICKRID = 'flickrimporter_flickrid'


@dataclass(frozen=True)
class WikiPageRef:
    page_id: int
    title: str


def connect_to_state_db(db_path):
    conn = sqlite3.connect(db_path)
    create_tables(conn)
    return conn


def create_tables(conn):
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS user_properties (
            up_user TEXT NOT NULL,
            up_property TEXT NOT NULL,
            up_value TEXT,
            PRIMARY KEY (up_user, up_property)
        )
    """)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS page_props (
            pp_page INTEGER,
            pp_title TEXT NOT NULL,
            pp_propname TEXT NOT NULL,
            pp_value TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS pp_propname_value
        ON page_props (pp_propname, pp_value)
    """)
    conn.commit()


class CredentialStore:
    """Flickr access tokens, one per wiki user."""

    def __init__(self, conn, option_name=TOKEN_OPTION):
        self.conn = conn
        self.option_name = option_name

    def get(self, user):
        if not user:
            return None
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT up_value FROM user_properties WHERE up_user = ? AND up_property = ?",
            (user, self.option_name),
        )
        row = cursor.fetchone()
        return Credential.from_json(row[0]) if row else None

    def save(self, user, credential):
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO user_properties (up_user, up_property, up_value) VALUES (?, ?, ?)
            ON CONFLICT (up_user, up_property) DO UPDATE SET up_value = excluded.up_value
        """, (user, self.option_name, credential.to_json()))
        self.conn.commit()

    def clear(self, user):
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM user_properties WHERE up_user = ? AND up_property = ?",
            (user, self.option_name),
        )
        self.conn.commit()
        return cursor.rowcount > 0


class ImportLinkage:
    """Which wiki page each Flickr photo was imported as."""

    def __init__(self, conn, propname=PAGE_PROP_FLICKRID):
        self.conn = conn
        self.propname = propname

    def find_by_flickr_id(self, flickr_id):
        """
        Get the page relating to a Flickr ID.

        Returns a WikiPageRef, or None if the photo has not been imported.
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT pp_page, pp_title FROM page_props WHERE pp_propname = ? AND pp_value = ?",
            (self.propname, str(flickr_id)),
        )
        row = cursor.fetchone()
        if row:
            return WikiPageRef(row[0], row[1])
        return None

    def record(self, flickr_id, page):
        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT INTO page_props (pp_page, pp_title, pp_propname, pp_value) VALUES (?, ?, ?, ?)",
            (page.page_id, page.title, self.propname, str(flickr_id)),
        )
        self.conn.commit()

    def sync_from_wiki(self, wiki):
        """
        Copy the linkage recorded on the wiki's own pages into the local database.

        Pages carry the Flickr ID as a page property, so photos imported from
        another host, or before the local database existed, are still known.
        Returns the number of linked pages found on the wiki.
        """
        cursor = self.conn.cursor()
        found = 0
        for flickr_id, page in wiki.pages_with_prop(self.propname):
            cursor.execute(
                "INSERT OR IGNORE INTO page_props (pp_page, pp_title, pp_propname, pp_value) VALUES (?, ?, ?, ?)",
                (page.page_id, page.title, self.propname, str(flickr_id)),
            )
            found += 1
        self.conn.commit()
        return found

    def count(self):
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM page_props WHERE pp_propname = ?", (self.propname,))
        return cursor.fetchone()[0]
