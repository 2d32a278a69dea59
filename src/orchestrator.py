import contextvars
import logging
import mimetypes
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path

from config import Config
import src.resizer as r
from src.artifact_store import ArtifactStore, parse_filename, DEFAULT_RETENTION_SECONDS
from src.errors import ConversionCancelled, DecodeError, InvalidImageError, NotFoundError
from src.icns_encoder import encode_icns, read_icns
from src.ico_encoder import encode_ico, read_ico
from src.logger import request_context
from src.icon_types import (ALLOWED_MIME_TYPES, ICNS_SIZES, ICO_SIZES, ConversionResult,
                            IcnsEntry, Kind, RenderedBitmap, SourceImage)

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_RESIZE_WORKERS = 4
DOWNLOAD_URL = "/api/download/{filename}"
_POLL_SECONDS = 0.05


class IconConverter:
    """Turns one source image into an ICO and an ICNS container.

    Every size of both tables is rendered as its own job on a thread pool;
    the containers are only encoded once all 14 renders have succeeded.
    """

    def __init__(self, resizer=None, max_workers=DEFAULT_RESIZE_WORKERS,
                 max_upload_bytes=DEFAULT_MAX_UPLOAD_BYTES, retries=1):
        self.resizer = resizer or r.resize
        self.max_workers = max_workers
        self.max_upload_bytes = max_upload_bytes
        self.retries = retries

    def validate(self, source):
        """Reject sources that can be ruled out without decoding them."""
        if not isinstance(source, SourceImage):
            raise InvalidImageError("Expected a SourceImage")
        if (source.mime_type or "").lower() not in ALLOWED_MIME_TYPES:
            raise InvalidImageError("Only PNG and JPG files are allowed")
        if not source.data:
            raise InvalidImageError("No image data provided")
        if len(source.data) > self.max_upload_bytes:
            raise InvalidImageError(
                f"Image is {len(source.data)} bytes, limit is {self.max_upload_bytes} bytes")

    def convert(self, source, cancel_event=None):
        """
        Render every icon size and encode both containers.

        Args:
            source (SourceImage): The uploaded image.
            cancel_event (threading.Event, optional): When set, pending renders
                are abandoned and ConversionCancelled is raised.

        Returns:
            ConversionResult: The ICO and ICNS buffers.

        Raises:
            InvalidImageError: Unsupported, oversize, or undecodable input.
            EncodingError: A container could not be built.
            ConversionCancelled: cancel_event was set before completion.
        """
        self.validate(source)

        jobs = [("ico", edge) for edge in ICO_SIZES] + [("icns", size.edge) for size in ICNS_SIZES]
        rendered = self._render_all(source.data, jobs, cancel_event)

        ico_bitmaps = [rendered[("ico", edge)] for edge in sorted(ICO_SIZES)]
        icns_entries = [IcnsEntry(size.tag, rendered[("icns", size.edge)].png)
                        for size in sorted(ICNS_SIZES, key=lambda s: s.edge)]

        result = ConversionResult(ico=encode_ico(ico_bitmaps), icns=encode_icns(icns_entries))
        logger.info(f"Converted {source.mime_type} image ({len(source.data)} bytes): "
                    f"ico={len(result.ico)} bytes, icns={len(result.icns)} bytes")
        return result

    def _render_all(self, data, jobs, cancel_event=None):
        # Set on the first failure or on caller cancellation; jobs that have
        # not started yet see it and bail out.
        abort = threading.Event()
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelled("Conversion was cancelled")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="resize") as pool:
            # A Context can only be entered by one thread at a time, so each
            # job gets its own copy carrying the caller's request id.
            futures = {pool.submit(contextvars.copy_context().run, self._render, data, key[1], abort): key
                       for key in jobs}
            pending = set(futures)
            try:
                while pending:
                    done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_EXCEPTION)
                    errors = [f.exception() for f in done if f.exception() is not None]
                    if errors:
                        raise errors[0]
                    if cancel_event is not None and cancel_event.is_set():
                        raise ConversionCancelled("Conversion was cancelled")
            except BaseException:
                abort.set()
                for future in pending:
                    future.cancel()
                raise
        return {key: future.result() for future, key in futures.items()}

    def _render(self, data, edge, abort):
        last_error = None
        for attempt in range(self.retries + 1):
            if abort.is_set():
                raise ConversionCancelled("Conversion was aborted")
            try:
                return RenderedBitmap(edge, self.resizer(data, edge, r.PADDING_CONTAIN))
            except DecodeError as e:
                raise InvalidImageError(f"Unreadable image: {e}") from e
            except Exception as e:
                last_error = e
                logger.warning(f"Resize to {edge}px failed (attempt {attempt + 1}): {e}")
        raise InvalidImageError(f"Could not render {edge}px icon: {last_error}") from last_error


def convert_and_store(source_bytes, mime_type, converter, store, cancel_event=None):
    """Convert an uploaded image and keep both icons in the store.

    Returns:
        dict: ``id`` plus the download URLs of the two files.
    """
    source = SourceImage(bytes(source_bytes or b""), mime_type)
    with request_context() as request_id:
        logger.info(f"Conversion request {request_id}: {len(source.data)} bytes of {mime_type}")
        try:
            result = converter.convert(source, cancel_event=cancel_event)
        except (InvalidImageError, ConversionCancelled) as e:
            logger.warning(f"Conversion rejected: {e}")
            raise
        except Exception as e:
            logger.error(f"Conversion error: {e}", exc_info=True)
            raise

        artifact_id = store.put(result.ico, result.icns)
        logger.info(f"Stored artifact {artifact_id}")
    return {
        "id": artifact_id,
        "ico_url": DOWNLOAD_URL.format(filename=f"{artifact_id}.{Kind.ICO.extension}"),
        "icns_url": DOWNLOAD_URL.format(filename=f"{artifact_id}.{Kind.ICNS.extension}"),
    }


def fetch_artifact(artifact_id, kind, store):
    """Return the stored ICO or ICNS bytes for an id."""
    return store.get(artifact_id, kind)


def resolve_download(filename, store):
    """
    Resolve a download filename such as ``lq3k2x9a1b2c.ico``.

    The filename is checked against the artifact naming pattern before the
    store is consulted.

    Returns:
        tuple: (bytes, Kind, Content-Disposition header value)
    """
    artifact_id, kind = parse_filename(filename)
    data = store.get(artifact_id, kind)
    return data, kind, f'attachment; filename="{artifact_id}.{kind.extension}"'


def build_service(config=None, materialize=True):
    """Create the converter and store from configuration.

    With ``materialize=False`` the store keeps artifacts in memory only,
    ignoring OUTPUT_DIR; callers that write the icons themselves use this.
    """
    config = config or Config()
    converter = IconConverter(
        max_workers=config.get_int("RESIZE_WORKERS", DEFAULT_RESIZE_WORKERS),
        max_upload_bytes=config.get_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
    )
    store = ArtifactStore(
        retention_seconds=config.get_int("RETENTION_SECONDS", DEFAULT_RETENTION_SECONDS),
        output_dir=(config.get("OUTPUT_DIR") or None) if materialize else None,
    )
    return converter, store


def run(image_path, out_dir=None, converter=None, store=None):
    """
    Convert one image file from disk and write ``<id>.ico`` / ``<id>.icns``.

    Returns:
        dict: The id, the written paths, and the entry summary of each container.
    """
    print('Starting Program')

    print('Loading Config')
    if converter is None or store is None:
        default_converter, default_store = build_service(materialize=False)
        converter = converter or default_converter
        store = store or default_store

    image_path = Path(image_path)
    mime_type, _ = mimetypes.guess_type(image_path.name)
    try:
        source_bytes = image_path.read_bytes()
    except FileNotFoundError:
        raise InvalidImageError(f"Image file not found: {image_path}")

    print(f"Converting {image_path}...")
    response = convert_and_store(source_bytes, mime_type, converter, store)
    artifact_id = response["id"]

    # The store purges its own files on close, so the icons handed to the
    # user are always separate copies.
    out_dir = Path(out_dir) if out_dir else Path(".")
    if store.output_dir is not None and store.output_dir.resolve() == out_dir.resolve():
        raise ValueError(f"{out_dir} is the store's own directory; its files are deleted on expiry")
    out_dir.mkdir(parents=True, exist_ok=True)
    written = {}
    for kind in Kind:
        path = out_dir / f"{artifact_id}.{kind.extension}"
        try:
            data = fetch_artifact(artifact_id, kind, store)
        except NotFoundError:
            logger.error(f"Artifact {artifact_id} expired before it could be written")
            raise
        path.write_bytes(data)
        written[kind.extension] = path
        print(f"Created: {path} ({len(data)} bytes)")

    ico_entries = read_ico(fetch_artifact(artifact_id, Kind.ICO, store))
    icns_entries = read_icns(fetch_artifact(artifact_id, Kind.ICNS, store))
    print("ICO sizes: " + ", ".join(str(entry.edge) for entry in ico_entries))
    print("ICNS types: " + ", ".join(entry.tag for entry in icns_entries))

    print('Program Ended')
    return {
        "id": artifact_id,
        "paths": written,
        "ico_sizes": [entry.edge for entry in ico_entries],
        "icns_tags": [entry.tag for entry in icns_entries],
    }
