"""Acquiring document bytes from the places a workflow can hand them over."""

import base64
import binascii
import os
from pathlib import Path
from typing import Annotated, Dict, Literal, Optional, Protocol, Union
from urllib.parse import unquote, urlparse

import aiohttp
from loguru import logger
from pydantic import BaseModel, Field
from doc_job_client.errors import ContentResolutionError


class BinarySource(BaseModel):
    kind: Literal["binary"] = "binary"
    data: bytes
    file_name: Optional[str] = None


class Base64Source(BaseModel):
    kind: Literal["base64"] = "base64"
    content: str
    file_name: Optional[str] = None


class UrlSource(BaseModel):
    kind: Literal["url"] = "url"
    url: str


class FilePathSource(BaseModel):
    kind: Literal["file_path"] = "file_path"
    path: str


ContentSource = Annotated[
    Union[BinarySource, Base64Source, UrlSource, FilePathSource],
    Field(discriminator="kind"),
]


class SourceResolver(Protocol):
    async def resolve(self, source) -> bytes: ...


class BinaryResolver:
    async def resolve(self, source: BinarySource) -> bytes:
        return source.data


class Base64Resolver:
    async def resolve(self, source: Base64Source) -> bytes:
        content = source.content.strip()
        # Data URLs: "data:application/pdf;base64,JVBERi0..."
        if content.startswith("data:") and "," in content:
            content = content.split(",", 1)[1]
        try:
            return base64.b64decode("".join(content.split()), validate=True)
        except binascii.Error as e:
            raise ContentResolutionError(f"Invalid base64 content: {e}") from e


class UrlResolver:
    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: float = 60.0):
        self.session = session
        self.timeout = timeout

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(
            url, timeout=aiohttp.ClientTimeout(total=self.timeout)
        ) as response:
            if response.status != 200:
                raise ContentResolutionError(
                    f"Downloading {url} failed with HTTP {response.status}"
                )
            return await response.read()

    async def resolve(self, source: UrlSource) -> bytes:
        logger.debug(f"Downloading document from {source.url}")
        try:
            if self.session is not None:
                return await self._fetch(self.session, source.url)
            async with aiohttp.ClientSession() as session:
                return await self._fetch(session, source.url)
        except aiohttp.ClientError as e:
            raise ContentResolutionError(f"Downloading {source.url} failed: {e}") from e


class FilePathResolver:
    async def resolve(self, source: FilePathSource) -> bytes:
        try:
            return Path(source.path).read_bytes()
        except OSError as e:
            raise ContentResolutionError(f"Reading {source.path} failed: {e}") from e


class ContentResolver:
    """Turns any content source into the raw document bytes"""

    def __init__(self, resolvers: Optional[Dict[str, SourceResolver]] = None):
        self.resolvers: Dict[str, SourceResolver] = {
            "binary": BinaryResolver(),
            "base64": Base64Resolver(),
            "url": UrlResolver(),
            "file_path": FilePathResolver(),
        }
        if resolvers:
            self.resolvers.update(resolvers)

    async def resolve(self, source: ContentSource) -> bytes:
        resolver = self.resolvers.get(source.kind)
        if resolver is None:
            raise ContentResolutionError(f"Unsupported content source: {source.kind}")

        data = await resolver.resolve(source)
        if not data:
            raise ContentResolutionError(f"{source.kind} source produced no content")
        return data


def encode_document(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def document_name(source: ContentSource, default: str) -> str:
    """Best file name for the document, falling back to ``default``"""
    if isinstance(source, (BinarySource, Base64Source)):
        name = source.file_name
    elif isinstance(source, UrlSource):
        name = os.path.basename(unquote(urlparse(source.url).path))
    else:
        name = os.path.basename(source.path)
    return name or default
