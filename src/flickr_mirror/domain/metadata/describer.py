"""
Descriptive metadata documents for sidecar files.

Renders an item as a small RDF/XML document using Dublin Core terms. When
the local copies are known, each one is described too: which remote item
it mirrors, which local user made it and when. The backup engine treats
the result as opaque bytes.
"""

import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional
from xml.etree import ElementTree as ET

from ..catalog.models import CatalogItem, MediaKind

RDF_NS = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
RDFS_NS = "http://www.w3.org/2000/01/rdf-schema#"
DC_NS = "http://purl.org/dc/elements/1.1/"
DCTERMS_NS = "http://purl.org/dc/terms/"
FOAF_NS = "http://xmlns.com/foaf/0.1/"
FLICKR_NS = "x-urn:flickr:"

PHOTO_URL = "https://www.flickr.com/photos/{owner}/{id}"

ET.register_namespace("rdf", RDF_NS)
ET.register_namespace("rdfs", RDFS_NS)
ET.register_namespace("dc", DC_NS)
ET.register_namespace("dcterms", DCTERMS_NS)
ET.register_namespace("foaf", FOAF_NS)
ET.register_namespace("flickr", FLICKR_NS)


@dataclass(frozen=True)
class Provenance:
    """Who made the local copies, on which host and when."""

    hostname: str
    login: str
    full_name: str = ""
    created: Optional[datetime] = None
    platform: str = sys.platform

    @property
    def creator_uri(self) -> str:
        return f"x-urn:{self.hostname}#{self.login}"

    @property
    def user_class_uri(self) -> str:
        return f"x-urn:{self.platform}:user"


def _w3cdtf(epoch: Optional[int]) -> Optional[str]:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sub(parent: ET.Element, ns: str, name: str, text: Optional[str]) -> None:
    if text:
        ET.SubElement(parent, f"{{{ns}}}{name}").text = text


def _ref(parent: ET.Element, ns: str, name: str, uri: str) -> None:
    ET.SubElement(parent, f"{{{ns}}}{name}", {f"{{{RDF_NS}}}resource": uri})


def _description(root: ET.Element, about: str) -> ET.Element:
    return ET.SubElement(root, f"{{{RDF_NS}}}Description", {f"{{{RDF_NS}}}about": about})


def _describe_files(
    root: ET.Element, photo: str, files: Iterable[Path], provenance: Optional[Provenance]
) -> None:
    created = None
    if provenance is not None:
        when = provenance.created or datetime.now(timezone.utc)
        created = when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        user_class = _description(root, provenance.user_class_uri)
        _ref(user_class, RDFS_NS, "subClassOf", f"{FOAF_NS}Person")

    # Sorted so the document does not depend on label order
    for path in sorted(Path(p).resolve() for p in files):
        desc = _description(root, path.as_uri())
        _ref(desc, RDFS_NS, "seeAlso", photo)
        if provenance is not None:
            _ref(desc, DC_NS, "creator", provenance.creator_uri)
            _sub(desc, DCTERMS_NS, "created", created)

    if provenance is not None:
        creator = _description(root, provenance.creator_uri)
        _sub(creator, FOAF_NS, "name", provenance.full_name)
        _sub(creator, FOAF_NS, "nick", provenance.login)
        _ref(creator, RDF_NS, "type", provenance.user_class_uri)


def describe_item(
    item: CatalogItem,
    files: Iterable[Path] = (),
    provenance: Optional[Provenance] = None,
) -> bytes:
    """Serialize an item's descriptive metadata as RDF/XML bytes.

    Args:
        item: Item with full details
        files: Local copies of the item; each gets its own description
        provenance: Local user, host and backup time for those copies
    """
    root = ET.Element(f"{{{RDF_NS}}}RDF")
    about = PHOTO_URL.format(owner=item.owner or "-", id=item.id)
    desc = _description(root, about)

    _sub(desc, DC_NS, "identifier", item.id)
    _sub(desc, DC_NS, "title", item.title)
    _sub(desc, DC_NS, "description", item.description)
    _sub(desc, DC_NS, "creator", item.owner)
    _sub(desc, DC_NS, "type", "MovingImage" if item.media == MediaKind.VIDEO else "StillImage")
    if item.taken is not None:
        _sub(desc, DC_NS, "date", item.taken.strftime("%Y-%m-%dT%H:%M:%S"))
    _sub(desc, DCTERMS_NS, "created", _w3cdtf(item.posted))
    _sub(desc, DCTERMS_NS, "modified", _w3cdtf(item.last_modified))

    for tag in item.tags:
        _sub(desc, DC_NS, "subject", tag)

    _sub(desc, FLICKR_NS, "secret", item.secret)
    _sub(desc, FLICKR_NS, "originalsecret", item.original_secret)

    _describe_files(root, about, files, provenance)

    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
