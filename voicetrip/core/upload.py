"""HTTP upload of captured clips for voicetrip.

The captured file is sent as a ``multipart/form-data`` body with a single
part named ``file``::

    --Boundary-<hex>\\r\\n
    Content-Disposition: form-data; name="file"; filename="recording.m4a"\\r\\n
    Content-Type: audio/m4a\\r\\n
    \\r\\n
    <clip bytes>\\r\\n
    --Boundary-<hex>--\\r\\n

httpx encodes the body from ``files=``.  The boundary is chosen here and passed
in the ``Content-Type`` header, so it can be checked against the payload
before sending.  The exchange itself uses :class:`httpx.AsyncClient`.

Response formats
----------------
``audio``
    The response body is the playable audio.
``json``
    Legacy envelope ``{"transcription", "response_text", "audio_base64"}``.
``auto`` (default)
    ``json`` when the response ``Content-Type`` is ``application/json``,
    ``audio`` otherwise.
"""

import asyncio
import base64
import binascii
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import httpx
from loguru import logger

from .config import REQUEST_TIMEOUT, RESPONSE_FORMAT, RESPONSE_FORMATS, AppConfig
from .errors import (
    ConfigurationError,
    DecodeFailedError,
    EmptyResponseError,
    FileUnreadableError,
    ServerStatusError,
    TransportError,
)
from .processing import mime_type_for

FIELD_NAME = 'file'


def generate_boundary(payload: bytes) -> str:
    """Return a fresh boundary token that does not occur in *payload*."""
    while True:
        boundary = f"Boundary-{uuid.uuid4().hex}"
        if boundary.encode('ascii') not in payload:
            return boundary


@dataclass
class UploadRequest:
    """One multipart upload, built fresh for every submit."""

    payload: bytes
    filename: str
    mime_type: str
    boundary: str
    field_name: str = FIELD_NAME

    @classmethod
    def from_file(cls, path: Path) -> "UploadRequest":
        """Read *path* fully and build a request for it.

        Raises:
            FileUnreadableError: If the file is missing or cannot be read.
        """
        path = Path(path)
        try:
            payload = path.read_bytes()
        except OSError as e:
            raise FileUnreadableError(path, e.strerror or str(e)) from e
        return cls(
            payload=payload,
            filename=path.name,
            mime_type=mime_type_for(path),
            boundary=generate_boundary(payload),
        )

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def headers(self) -> Dict[str, str]:
        return {'Content-Type': self.content_type}

    @property
    def files(self) -> Dict[str, Tuple[str, bytes, str]]:
        return {self.field_name: (self.filename, self.payload, self.mime_type)}

    def check_boundary(self) -> None:
        """Raise ``ValueError`` if the boundary token occurs in the payload."""
        if self.boundary.encode('ascii') in self.payload:
            raise ValueError("Boundary token occurs in the payload")

    def build(self, url: str) -> httpx.Request:
        """Return the POST request carrying this upload."""
        self.check_boundary()
        return httpx.Request('POST', url, files=self.files, headers=self.headers)

    def encode(self) -> bytes:
        """Serialise the request as a multipart/form-data body."""
        # the URL does not affect the body
        return self.build('http://localhost/').read()


@dataclass
class ServerAudio:
    """Audio returned by the service, plus text when the JSON envelope was used."""

    audio: bytes
    content_type: Optional[str] = None
    transcription: Optional[str] = None
    response_text: Optional[str] = None


class UploadClient:
    """Sends a captured clip to the service and returns the audio it answers with.

    Args:
        endpoint: Full URL of the upload endpoint.
        timeout: Request timeout in seconds.
        response_format: ``auto``, ``audio`` or ``json``.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = REQUEST_TIMEOUT,
        response_format: str = RESPONSE_FORMAT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not endpoint:
            raise ConfigurationError("Upload endpoint must not be empty")
        if response_format not in RESPONSE_FORMATS:
            raise ConfigurationError(f"Unknown response format: {response_format!r}")
        self._endpoint = endpoint
        self._response_format = response_format
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        endpoint: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "UploadClient":
        """Build a client from the ``server`` configuration.

        Raises:
            ConfigurationError: If no endpoint is given or configured.
        """
        server = config.get_server_config()
        return cls(
            endpoint=endpoint or config.get_endpoint(),
            timeout=server['timeout'],
            response_format=server['response_format'],
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def upload(self, path: Path) -> ServerAudio:
        """Upload the clip at *path* and return the service's audio.

        Raises:
            FileUnreadableError: The clip cannot be read.  No request is sent.
            TransportError: The exchange failed or returned a non-2xx status.
            EmptyResponseError: The response carries no audio.
            DecodeFailedError: A JSON envelope could not be decoded.
        """
        request = await asyncio.to_thread(UploadRequest.from_file, Path(path))
        request.check_boundary()
        logger.info(f'Uploading {request.filename} ({len(request.payload)} bytes) to {self._endpoint}')

        try:
            response = await self._client.post(
                self._endpoint,
                files=request.files,
                headers=request.headers,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {self._endpoint} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self._endpoint} failed: {e}") from e

        if not response.is_success:
            raise ServerStatusError(response.status_code, response.text)

        logger.debug(
            f'Response: HTTP {response.status_code}, {len(response.content)} bytes, '
            f'{response.headers.get("content-type", "no content-type")}'
        )
        return self.decode_response(response)

    def decode_response(self, response: httpx.Response) -> ServerAudio:
        """Turn a successful response into :class:`ServerAudio`."""
        if not response.content:
            raise EmptyResponseError()

        content_type = response.headers.get('content-type')
        response_format = self._response_format
        if response_format == 'auto':
            is_json = bool(content_type) and 'application/json' in content_type.lower()
            response_format = 'json' if is_json else 'audio'

        if response_format == 'audio':
            return ServerAudio(audio=response.content, content_type=content_type)
        return self._decode_envelope(response, content_type)

    def _decode_envelope(self, response: httpx.Response, content_type: Optional[str]) -> ServerAudio:
        try:
            envelope = response.json()
        except ValueError as e:
            raise DecodeFailedError(f"Response is not a valid JSON envelope: {e}") from e
        if not isinstance(envelope, dict):
            raise DecodeFailedError("Response JSON envelope must be an object")

        encoded = envelope.get('audio_base64')
        if not encoded:
            raise EmptyResponseError("Response envelope has no audio_base64 field")
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise DecodeFailedError(f"audio_base64 is not valid base64: {e}") from e
        if not audio:
            raise EmptyResponseError("Response envelope carries empty audio")

        transcription = envelope.get('transcription')
        response_text = envelope.get('response_text')
        if transcription:
            logger.info(f'Transcription: {transcription}')
        if response_text:
            logger.info(f'Response: {response_text}')
        return ServerAudio(
            audio=audio,
            content_type=content_type,
            transcription=transcription,
            response_text=response_text,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
