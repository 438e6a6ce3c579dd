#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""XML response decoding.

Two strategies are offered. :py:class:`XmlDocument` parses a whole body into a tree
for random access. :py:class:`StreamingItemDecoder` feeds the body chunk by chunk
into a pull parser and emits one record per top-level ``item`` of a named collection,
discarding each subtree once decoded.

Records are described declaratively with :py:class:`RecordSchema`, whose fields map
element paths onto dictionary keys. Element names are matched without regard to
namespace.
"""

from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from typing import Any

from lxml import etree

ITEM_TAG = "item"


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True)


def local_name(element: etree._Element) -> str:
    """The element name without its namespace."""
    return etree.QName(element).localname


def _text(element: etree._Element | None) -> str | None:
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def find_child(element: etree._Element, path: str) -> etree._Element | None:
    """Walk ``/``-separated child names from ``element``, ignoring namespaces."""
    current: etree._Element | None = element
    for name in path.split("/"):
        if current is None:
            return None
        current = next(
            (
                child
                for child in current
                if isinstance(child.tag, str) and local_name(child) == name
            ),
            None,
        )
    return current


def child_text(element: etree._Element, path: str) -> str | None:
    """Trimmed text at ``path``; missing or blank elements give ``None``."""
    return _text(find_child(element, path))


def child_items(
    element: etree._Element | None, item_tag: str = ITEM_TAG
) -> list[etree._Element]:
    """Direct ``item_tag`` children of a collection element."""
    if element is None:
        return []
    return [
        child
        for child in element
        if isinstance(child.tag, str) and local_name(child) == item_tag
    ]


@dataclass(frozen=True)
class Text:
    """A trimmed text value found at ``path`` below the record element."""

    path: str
    convert: Callable[[str], Any] | None = None

    def decode(self, element: etree._Element) -> Any:
        value = child_text(element, self.path)
        if value is None or self.convert is None:
            return value
        return self.convert(value)


@dataclass(frozen=True)
class TextList:
    """Text of each item in a collection, optionally read from ``value_path``.

    Blank values are dropped.
    """

    path: str
    item_tag: str = ITEM_TAG
    value_path: str | None = None

    def decode(self, element: etree._Element) -> list[str]:
        values = []
        for item in child_items(find_child(element, self.path), self.item_tag):
            if self.value_path is None:
                value = _text(item)
            else:
                value = child_text(item, self.value_path)
            if value is not None:
                values.append(value)
        return values


@dataclass(frozen=True)
class TagSet:
    """A key/value item collection decoded into a dict.

    Tags without a value decode to the empty string.
    """

    path: str = "tagSet"
    item_tag: str = ITEM_TAG
    key: str = "key"
    value: str = "value"

    def decode(self, element: etree._Element) -> dict[str, str]:
        tags: dict[str, str] = {}
        for item in child_items(find_child(element, self.path), self.item_tag):
            key = child_text(item, self.key)
            if key is not None:
                tags[key] = child_text(item, self.value) or ""
        return tags


@dataclass(frozen=True)
class ItemList:
    """A nested item collection, each item decoded with ``schema``."""

    path: str
    schema: "RecordSchema"
    item_tag: str = ITEM_TAG

    def decode(self, element: etree._Element) -> list[dict[str, Any]]:
        return [
            self.schema.decode(item)
            for item in child_items(find_child(element, self.path), self.item_tag)
        ]


type SchemaField = Text | TextList | TagSet | ItemList


class RecordSchema:
    """Maps record keys to field descriptors.

    .. code-block:: python

        RecordSchema(volume_id=Text("volumeId"), size=Text("size", int))
    """

    def __init__(self, **fields: SchemaField):
        self.fields = fields

    def decode(self, element: etree._Element) -> dict[str, Any]:
        return {key: field.decode(element) for key, field in self.fields.items()}


class XmlDocument:
    """A fully parsed response body."""

    def __init__(self, root: etree._Element):
        self.root = root

    @classmethod
    def from_bytes(cls, body: bytes) -> "XmlDocument":
        """Parse a response body.

        :raises lxml.etree.XMLSyntaxError: If the body is not well formed.
        """
        return cls(etree.fromstring(body.strip(), parser=_xml_parser()))

    def find_all(self, tag: str) -> list[etree._Element]:
        """Every element named ``tag`` in document order, at any depth."""
        return list(self.root.iter(f"{{*}}{tag}"))

    def first(self, tag: str) -> etree._Element | None:
        return next(self.root.iter(f"{{*}}{tag}"), None)

    def first_text(self, tag: str) -> str | None:
        return _text(self.first(tag))

    def items(
        self, collection_tag: str, item_tag: str = ITEM_TAG
    ) -> list[etree._Element]:
        """The top-level items of the first ``collection_tag``."""
        return child_items(self.first(collection_tag), item_tag)

    def decode_items(
        self, collection_tag: str, schema: RecordSchema, item_tag: str = ITEM_TAG
    ) -> list[dict[str, Any]]:
        return [schema.decode(item) for item in self.items(collection_tag, item_tag)]

    def return_value(self) -> bool:
        """Whether a ``<return>`` envelope reported success."""
        return (self.first_text("return") or "").lower() == "true"

    def __repr__(self) -> str:
        return f"XmlDocument(root={local_name(self.root)!r})"


class StreamingItemDecoder[T]:
    """Incrementally decodes the top-level items of one collection.

    ``item`` elements nested inside a record, such as block device mappings inside
    an image, are part of that record and never end it. Decoding stops at the end
    tag of the collection; anything after it is ignored.
    """

    def __init__(
        self,
        collection_tag: str,
        schema: RecordSchema,
        factory: Callable[[dict[str, Any]], T | None] | None = None,
        item_tag: str = ITEM_TAG,
    ):
        """
        :param collection_tag: Name of the element wrapping the records, for example
            ``imagesSet``.
        :param schema: Schema applied to each top-level item.
        :param factory: Builds the emitted record from the decoded dict. Records for
            which it returns ``None`` are skipped.
        :param item_tag: Name of the record elements, ``member`` for some services.
        """
        self.collection_tag = collection_tag
        self.item_tag = item_tag
        self.schema = schema
        self._factory = factory
        self._parser = etree.XMLPullParser(
            events=("start", "end"), resolve_entities=False, no_network=True
        )
        self._in_collection = False
        self._depth = 0
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: bytes) -> list[T]:
        """Feed the next chunk of the body and return the records it completed."""
        self._parser.feed(chunk)
        return list(self._drain())

    def close(self) -> list[T]:
        """Signal the end of the body and return any remaining records."""
        self._parser.close()
        return list(self._drain())

    async def decode(self, body: AsyncIterable[bytes]) -> AsyncIterator[T]:
        """Decode a streamed body, yielding records as soon as they are complete."""
        async for chunk in body:
            for record in self.feed(chunk):
                yield record
            if self._finished:
                return
        for record in self.close():
            yield record

    def _drain(self) -> Iterator[T]:
        for event, element in self._parser.read_events():
            if self._finished:
                continue
            name = local_name(element)
            if event == "start":
                if not self._in_collection:
                    self._in_collection = name == self.collection_tag
                elif name == self.item_tag:
                    self._depth += 1
                continue

            if not self._in_collection:
                continue
            if name == self.item_tag:
                self._depth -= 1
                if self._depth == 0:
                    record = self._emit(element)
                    if record is not None:
                        yield record
            elif name == self.collection_tag and self._depth == 0:
                self._finished = True

    def _emit(self, element: etree._Element) -> T | None:
        decoded = self.schema.decode(element)
        element.clear()
        parent = element.getparent()
        if parent is not None:
            while element.getprevious() is not None:
                del parent[0]
        if self._factory is None:
            return decoded  # type: ignore[return-value]
        return self._factory(decoded)


def parse_error_envelope(body: bytes) -> tuple[str | None, str | None, str | None]:
    """Extract ``(code, message, request_id)`` from an error body.

    Any part that cannot be found is ``None``, including when the body is not XML.
    """
    try:
        document = XmlDocument.from_bytes(body)
    except etree.XMLSyntaxError:
        return None, None, None
    error = document.first("Error")
    code = message = None
    if error is not None:
        code = child_text(error, "Code")
        message = child_text(error, "Message")
    request_id = document.first_text("RequestID") or document.first_text("RequestId")
    return code, message, request_id
